# acl.py — Task access-list maintenance
# can_access = creator ∪ assignees ∪ their superior chains. Reassignment only
# ever grows the list; removal goes through revoke_access explicitly.
import logging
from typing import Iterable, List

from errors import ProtectedMember
from hierarchy import HierarchyWalker
from models import Task
from stores import TaskStore

logger = logging.getLogger("taskscope.acl")


def _ordered_union(*groups: Iterable[str]) -> List[str]:
    merged = {}
    for group in groups:
        for user_id in group:
            if user_id:
                merged.setdefault(user_id, None)
    return list(merged)


class AccessListMaintainer:
    def __init__(self, walker: HierarchyWalker, store: TaskStore):
        self.walker = walker
        self.store = store

    async def _with_superiors(self, user_ids: Iterable[str]) -> List[str]:
        members: List[str] = []
        for user_id in _ordered_union(user_ids):
            members.append(user_id)
            members.extend(await self.walker.superior_chain(user_id))
        return _ordered_union(members)

    async def seed_access_list(self, created_by: str, assignees: Iterable[str]) -> List[str]:
        """Initial ACL for a new task"""
        return await self._with_superiors(_ordered_union([created_by], assignees))

    async def grant_initial(self, task: Task, assignees: Iterable[str]) -> List[str]:
        members = await self.seed_access_list(task.created_by_id, assignees)
        await self.store.add_access_members(task.id, members)
        return members

    async def extend_access_list(self, task: Task, new_assignees: Iterable[str]) -> List[str]:
        """Grant access to newly assigned users and their superiors.

        Users already in ``task.assigned_to`` are skipped. Returns the full
        updated access list; existing members are never removed.
        """
        current_assignees = set(task.assigned_to)
        added = [uid for uid in _ordered_union(new_assignees) if uid not in current_assignees]
        grants = await self._with_superiors(added)

        existing = task.can_access
        missing = [uid for uid in grants if uid not in set(existing)]
        if missing:
            await self.store.add_access_members(task.id, missing)
            logger.info(f"Task {task.id}: granted access to {len(missing)} user(s)")
        return _ordered_union(existing, grants)

    async def revoke_access(self, task: Task, user_ids: Iterable[str]) -> List[str]:
        """Administrative removal from the ACL"""
        targets = _ordered_union(user_ids)
        protected = {task.created_by_id, *task.assigned_to}
        blocked = [uid for uid in targets if uid in protected]
        if blocked:
            raise ProtectedMember()

        await self.store.remove_access_members(task.id, targets)
        logger.info(f"Task {task.id}: revoked access for {len(targets)} user(s)")
        return [uid for uid in task.can_access if uid not in set(targets)]
