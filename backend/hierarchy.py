# hierarchy.py — Reporting-chain traversal over senior-person links
import logging
from typing import AsyncIterator, List

from errors import IntegrityWarning

logger = logging.getLogger("taskscope.hierarchy")


class HierarchyWalker:
    """Walks the senior-person graph for one request.

    The graph is only assumed to be a forest. Revisiting a user (cycle) or
    following a link to a user that no longer exists truncates the walk and
    records an IntegrityWarning in ``warnings``.
    """

    def __init__(self, directory):
        self.directory = directory
        self.warnings: List[IntegrityWarning] = []

    def _warn(self, kind: str, user_id: str, origin_id: str) -> None:
        warning = IntegrityWarning(kind, user_id, origin_id)
        self.warnings.append(warning)
        logger.warning(str(warning))

    async def iter_superiors(self, user_id: str) -> AsyncIterator[str]:
        """Yield the direct senior of ``user_id``, then theirs, and so on"""
        visited = {user_id}
        current = await self.directory.get_user(user_id)
        if current is None:
            self._warn(IntegrityWarning.DANGLING, user_id, user_id)
            return

        while current.senior_person_id:
            senior_id = current.senior_person_id
            if senior_id in visited:
                self._warn(IntegrityWarning.CYCLE, senior_id, user_id)
                return
            senior = await self.directory.get_user(senior_id)
            if senior is None:
                self._warn(IntegrityWarning.DANGLING, senior_id, user_id)
                return
            visited.add(senior_id)
            yield senior_id
            current = senior

    async def superior_chain(self, user_id: str) -> List[str]:
        return [senior_id async for senior_id in self.iter_superiors(user_id)]

    async def direct_reports(self, user_id: str) -> List[str]:
        return await self.directory.list_direct_reports(user_id)
