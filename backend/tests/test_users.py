# tests/test_users.py — Users, roles and hierarchy router tests
import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers


# --- Roles ---

@pytest.mark.asyncio
async def test_role_management(client: AsyncClient, org):
    headers = get_auth_headers(org.ceo)
    resp = await client.post("/api/v1/users/roles", json={"name": "Auditor"}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["name"] == "Auditor"

    resp = await client.post("/api/v1/users/roles", json={"name": "Auditor"}, headers=headers)
    assert resp.status_code == 409

    resp = await client.post(
        "/api/v1/users/roles", json={"name": "Shadow"}, headers=get_auth_headers(org.lead),
    )
    assert resp.status_code == 403

    resp = await client.get("/api/v1/users/roles", headers=get_auth_headers(org.designer))
    names = [r["name"] for r in resp.json()]
    assert "Auditor" in names
    assert "Shadow" not in names


# --- Users ---

@pytest.mark.asyncio
async def test_create_user(client: AsyncClient, org, roles):
    headers = get_auth_headers(org.ceo)
    payload = {
        "email": "new.hire@taskscope.dev",
        "password": "Welcome123!",
        "display_name": "Nia Newhire",
        "senior_person_id": org.engineer.id,
        "role_ids": [roles["Engineer"].id, roles["Designer"].id],
    }
    resp = await client.post("/api/v1/users", json=payload, headers=headers)
    assert resp.status_code == 201
    data = resp.json()
    assert data["senior_person_id"] == org.engineer.id
    assert [r["name"] for r in data["roles"]] == ["Engineer", "Designer"]

    resp = await client.post("/api/v1/users", json=payload, headers=headers)
    assert resp.status_code == 409

    resp = await client.post(
        "/api/v1/users",
        json=dict(payload, email="other@taskscope.dev"),
        headers=get_auth_headers(org.lead),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_user_with_unknown_role(client: AsyncClient, org):
    resp = await client.post(
        "/api/v1/users",
        json={"email": "x@taskscope.dev", "password": "Welcome123!", "role_ids": ["nope"]},
        headers=get_auth_headers(org.ceo),
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_visible_users_by_role(client: AsyncClient, org):
    resp = await client.get("/api/v1/users/visible", headers=get_auth_headers(org.ceo))
    assert len(resp.json()) == 5

    resp = await client.get("/api/v1/users/visible", headers=get_auth_headers(org.lead))
    assert {u["id"] for u in resp.json()} == {org.lead.id, org.engineer.id}

    resp = await client.get("/api/v1/users/visible", headers=get_auth_headers(org.designer))
    assert [u["id"] for u in resp.json()] == [org.designer.id]

    resp = await client.get(
        "/api/v1/users/visible", params={"search": "erin"}, headers=get_auth_headers(org.ceo),
    )
    assert [u["id"] for u in resp.json()] == [org.engineer.id]


# --- Hierarchy ---

@pytest.mark.asyncio
async def test_superior_chain(client: AsyncClient, org):
    resp = await client.get(
        f"/api/v1/users/{org.designer.id}/superiors", headers=get_auth_headers(org.designer),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert [m["id"] for m in data["chain"]] == [org.engineer.id, org.lead.id, org.ceo.id]
    assert data["truncated"] is False

    resp = await client.get(
        f"/api/v1/users/{org.lead.id}/superiors", headers=get_auth_headers(org.designer),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_superior_chain_with_cycle(client: AsyncClient, org):
    headers = get_auth_headers(org.ceo)
    resp = await client.put(
        f"/api/v1/users/{org.ceo.id}/senior",
        json={"senior_person_id": org.designer.id},
        headers=headers,
    )
    assert resp.status_code == 200

    resp = await client.get(f"/api/v1/users/{org.designer.id}/superiors", headers=headers)
    data = resp.json()
    assert [m["id"] for m in data["chain"]] == [org.engineer.id, org.lead.id, org.ceo.id]
    assert data["truncated"] is True
    assert "cycle" in data["warnings"][0]


@pytest.mark.asyncio
async def test_cannot_be_own_senior(client: AsyncClient, org):
    resp = await client.put(
        f"/api/v1/users/{org.lead.id}/senior",
        json={"senior_person_id": org.lead.id},
        headers=get_auth_headers(org.ceo),
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_replace_roles(client: AsyncClient, org, roles):
    resp = await client.put(
        f"/api/v1/users/{org.engineer.id}/roles",
        json={"role_ids": [roles["Project Lead"].id, roles["Engineer"].id]},
        headers=get_auth_headers(org.ceo),
    )
    assert resp.status_code == 200
    assert [r["name"] for r in resp.json()["roles"]] == ["Project Lead", "Engineer"]

    resp = await client.get("/api/v1/auth/me", headers=get_auth_headers(org.engineer))
    assert resp.json()["access_level"] == "Project Lead"
