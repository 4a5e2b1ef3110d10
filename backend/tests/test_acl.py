# tests/test_acl.py — Access-list seeding, extension and revocation
import pytest

from acl import AccessListMaintainer
from errors import ProtectedMember
from hierarchy import HierarchyWalker
from tests.conftest import FakeDirectory, make_task

# A has no senior, B -> A, C -> B, D has no senior, E -> D
SENIORS = {"A": None, "B": "A", "C": "B", "D": None, "E": "D"}


def _maintainer(store, seniors=SENIORS, missing=()):
    return AccessListMaintainer(HierarchyWalker(FakeDirectory(seniors, missing)), store)


@pytest.mark.asyncio
async def test_seed_includes_creator_assignees_and_superiors(fake_store):
    acl = _maintainer(fake_store)
    assert await acl.seed_access_list("D", ["C"]) == ["D", "C", "B", "A"]


@pytest.mark.asyncio
async def test_seed_has_no_duplicates(fake_store):
    acl = _maintainer(fake_store)
    members = await acl.seed_access_list("C", ["C", "B"])
    assert members == ["C", "B", "A"]


@pytest.mark.asyncio
async def test_grant_initial_persists_seed(fake_store):
    task = fake_store.register(make_task(created_by="D", assigned_to=["C"]))
    await _maintainer(fake_store).grant_initial(task, ["C"])
    assert task.can_access == ["D", "C", "B", "A"]


@pytest.mark.asyncio
async def test_extend_adds_new_assignee_and_chain(fake_store):
    task = fake_store.register(
        make_task(created_by="D", assigned_to=["C"], can_access=["D", "C", "B", "A"])
    )
    result = await _maintainer(fake_store).extend_access_list(task, ["E"])

    assert set(result) == {"A", "B", "C", "D", "E"}
    assert set(task.can_access) == {"A", "B", "C", "D", "E"}


@pytest.mark.asyncio
async def test_extend_never_removes(fake_store):
    task = fake_store.register(
        make_task(created_by="D", assigned_to=["C"], can_access=["D", "C", "B", "A"])
    )
    before = set(task.can_access)
    # C is replaced by E; C and its chain keep access
    result = await _maintainer(fake_store).extend_access_list(task, ["E"])
    assert before <= set(result)


@pytest.mark.asyncio
async def test_extend_skips_existing_assignees(fake_store):
    task = fake_store.register(
        make_task(created_by="D", assigned_to=["C"], can_access=["D", "C", "B", "A"])
    )
    result = await _maintainer(fake_store).extend_access_list(task, ["C"])
    assert result == ["D", "C", "B", "A"]
    assert fake_store.add_calls == []


@pytest.mark.asyncio
async def test_extend_with_empty_list_changes_nothing(fake_store):
    task = fake_store.register(
        make_task(created_by="D", assigned_to=["C"], can_access=["D", "C", "B", "A"])
    )
    assert await _maintainer(fake_store).extend_access_list(task, []) == ["D", "C", "B", "A"]


@pytest.mark.asyncio
async def test_extend_tolerates_dangling_superior(fake_store):
    task = fake_store.register(make_task(created_by="A", can_access=["A"]))
    acl = _maintainer(fake_store, seniors={"A": None, "F": "ghost"})
    result = await acl.extend_access_list(task, ["F"])
    assert result == ["A", "F"]
    assert acl.walker.warnings


@pytest.mark.asyncio
async def test_revoke_refuses_creator_and_assignees(fake_store):
    task = fake_store.register(
        make_task(created_by="D", assigned_to=["C"], can_access=["D", "C", "B", "A"])
    )
    acl = _maintainer(fake_store)
    with pytest.raises(ProtectedMember):
        await acl.revoke_access(task, ["D"])
    with pytest.raises(ProtectedMember):
        await acl.revoke_access(task, ["B", "C"])
    assert task.can_access == ["D", "C", "B", "A"]


@pytest.mark.asyncio
async def test_revoke_removes_other_members(fake_store):
    task = fake_store.register(
        make_task(created_by="D", assigned_to=["C"], can_access=["D", "C", "B", "A"])
    )
    remaining = await _maintainer(fake_store).revoke_access(task, ["A"])
    assert remaining == ["D", "C", "B"]


@pytest.mark.asyncio
async def test_creation_then_reassignment_scenario(fake_store):
    # A has no senior; B -> C -> D; E -> C
    seniors = {"A": None, "B": "C", "C": "D", "D": None, "E": "C"}
    acl = _maintainer(fake_store, seniors=seniors)
    task = fake_store.register(make_task(created_by="A", assigned_to=["B"]))

    await acl.grant_initial(task, ["B"])
    assert set(task.can_access) == {"A", "B", "C", "D"}

    result = await acl.extend_access_list(task, ["B", "E"])
    assert sorted(result) == ["A", "B", "C", "D", "E"]
    assert sorted(task.can_access) == ["A", "B", "C", "D", "E"]
    assert "A" in task.can_access
