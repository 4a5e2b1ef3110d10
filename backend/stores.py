# stores.py — Data access for users, roles, tasks, comments and task activity
# Every store wraps a request-scoped AsyncSession. Only ActivityStore commits on
# its own; task mutations are committed by the caller.
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import AuditWriteFailed
from models import (
    User, Role, UserRoleLink, Task, TaskAssignee, TaskAccess, TaskComment,
    TaskActivity, utcnow,
)

logger = logging.getLogger("taskscope.stores")


def _insert_for(db: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT DO NOTHING"""
    dialect = db.bind.dialect.name if db.bind is not None else "postgresql"
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        from sqlalchemy.dialects.postgresql import insert
    return insert


# ============================================================
# USERS & ROLES
# ============================================================

class UserDirectory:
    """User/role lookups, memoised for the lifetime of one request"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._users: Dict[str, Optional[User]] = {}

    async def get_user(self, user_id: str) -> Optional[User]:
        if user_id not in self._users:
            result = await self.db.execute(select(User).where(User.id == user_id))
            self._users[user_id] = result.scalar_one_or_none()
        return self._users[user_id]

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def reload(self, user_id: str) -> Optional[User]:
        """Fresh read of a user, bypassing the per-request memo"""
        stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        self._users[user_id] = result.scalar_one_or_none()
        return self._users[user_id]

    async def get_role(self, role_id: str) -> Optional[Role]:
        result = await self.db.execute(select(Role).where(Role.id == role_id))
        return result.scalar_one_or_none()

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        result = await self.db.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def list_roles(self) -> List[Role]:
        result = await self.db.execute(select(Role).order_by(Role.name.asc()))
        return list(result.scalars().all())

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = [uid for uid in dict.fromkeys(user_ids) if uid]
        if not ids:
            return {}
        result = await self.db.execute(select(User).where(User.id.in_(ids)))
        users = {u.id: u for u in result.scalars().all()}
        self._users.update(users)
        return users

    async def list_direct_reports(self, user_id: str) -> List[str]:
        stmt = (
            select(User.id)
            .where(User.senior_person_id == user_id)
            .order_by(User.display_name.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_users(self, user_ids: Optional[List[str]] = None, search: Optional[str] = None) -> List[User]:
        stmt = select(User).order_by(User.display_name.asc())
        if user_ids is not None:
            stmt = stmt.where(User.id.in_(user_ids))
        if search:
            stmt = stmt.where(
                User.display_name.ilike(f"%{search}%") | User.email.ilike(f"%{search}%")
            )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def set_roles(self, user: User, roles: List[Role]) -> None:
        """Replace the ordered role set through the delete-orphan collection"""
        user.role_links.clear()
        await self.db.flush()
        user.role_links.extend(
            UserRoleLink(role=role, position=position) for position, role in enumerate(roles)
        )
        await self.db.flush()
        self._users.pop(user.id, None)


# ============================================================
# TASKS
# ============================================================

class TaskStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, task_id: str) -> Optional[Task]:
        stmt = (
            select(Task)
            .where(Task.id == task_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_tasks(
        self,
        accessible_to: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        offset: int = 0,
        limit: int = 10,
    ):
        """Return (tasks, total) for one page"""
        stmt = select(Task)
        if accessible_to:
            stmt = stmt.where(
                Task.id.in_(select(TaskAccess.task_id).where(TaskAccess.user_id == accessible_to))
            )
        if status:
            stmt = stmt.where(Task.status == status)
        if priority:
            stmt = stmt.where(Task.priority == priority)
        if search:
            stmt = stmt.where(
                Task.title.ilike(f"%{search}%") | Task.description.ilike(f"%{search}%")
            )

        count_result = await self.db.execute(select(func.count()).select_from(stmt.subquery()))
        total = count_result.scalar() or 0

        column = getattr(Task, sort_by, Task.created_at)
        stmt = stmt.order_by(column.asc() if sort_order == "asc" else column.desc())
        result = await self.db.execute(stmt.offset(offset).limit(limit))
        return list(result.scalars().all()), total

    async def set_assignees(self, task: Task, user_ids: List[str]) -> None:
        task.assignee_links.clear()
        await self.db.flush()
        task.assignee_links.extend(
            TaskAssignee(user_id=user_id, position=position)
            for position, user_id in enumerate(dict.fromkeys(user_ids))
        )
        await self.db.flush()

    async def add_access_members(self, task_id: str, user_ids: Iterable[str]) -> None:
        """Atomic add-to-set on the task ACL; existing members are no-ops"""
        now = utcnow()
        rows = [{"task_id": task_id, "user_id": uid, "granted_at": now} for uid in dict.fromkeys(user_ids)]
        if not rows:
            return
        insert = _insert_for(self.db)
        stmt = insert(TaskAccess).values(rows).on_conflict_do_nothing(
            index_elements=["task_id", "user_id"]
        )
        await self.db.execute(stmt)

    async def remove_access_members(self, task_id: str, user_ids: Iterable[str]) -> None:
        await self.db.execute(
            delete(TaskAccess).where(
                TaskAccess.task_id == task_id, TaskAccess.user_id.in_(list(user_ids))
            )
        )

    async def delete(self, task_id: str) -> None:
        """Remove the task and everything it owns except activity"""
        await self.db.execute(delete(TaskComment).where(TaskComment.task_id == task_id))
        await self.db.execute(delete(TaskAccess).where(TaskAccess.task_id == task_id))
        await self.db.execute(delete(TaskAssignee).where(TaskAssignee.task_id == task_id))
        await self.db.execute(delete(Task).where(Task.id == task_id))


# ============================================================
# COMMENTS
# ============================================================

class CommentStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, task_id: str, author_id: str, content: str) -> TaskComment:
        comment = TaskComment(task_id=task_id, author_id=author_id, content=content)
        self.db.add(comment)
        await self.db.flush()
        return comment

    async def list_for_task(self, task_id: str) -> List[TaskComment]:
        stmt = (
            select(TaskComment)
            .where(TaskComment.task_id == task_id)
            .order_by(TaskComment.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().unique().all())


# ============================================================
# ACTIVITY (Append-only)
# ============================================================

class ActivityStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, records: List[TaskActivity]) -> None:
        """Insert and commit records; raises AuditWriteFailed on any DB error"""
        try:
            self.db.add_all(records)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise AuditWriteFailed(str(exc)) from exc

    async def list_for_task(self, task_id: str) -> List[TaskActivity]:
        stmt = (
            select(TaskActivity)
            .where(TaskActivity.task_id == task_id)
            .order_by(TaskActivity.timestamp.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().unique().all())

    async def delete_for_task(self, task_id: str) -> None:
        """Cascade delete used only when the parent task is deleted"""
        await self.db.execute(delete(TaskActivity).where(TaskActivity.task_id == task_id))
