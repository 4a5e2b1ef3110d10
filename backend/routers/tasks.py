# routers/tasks.py — Tasks, task access lists, comments and the activity trail
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from access_policy import (
    can_view, can_mutate, can_reassign, can_revoke, can_create, can_comment,
)
from acl import AccessListMaintainer
from activity import ActivityRecorder, task_snapshot
from activity_feed import (
    ACTIVITY_TIMEZONE, list_activity, group_by_day, describe, assignment_user_ids,
)
from auth import get_current_principal, get_role_policy
from database import get_db_session
from errors import NotAuthorized, NotFound
from hierarchy import HierarchyWalker
from models import Task, TaskComment, TaskActivity, TaskStatus, TaskPriority
from principal import Principal, RolePolicy
from stores import UserDirectory, TaskStore, CommentStore, ActivityStore

logger = logging.getLogger("taskscope.tasks")

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])

AUDIT_WARNING_HEADER = "X-Audit-Warning"

# Columns a PATCH may never null out
_REQUIRED_FIELDS = {"title", "status", "priority"}


# ============================================================
# SCHEMAS
# ============================================================

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.OPEN
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    assigned_to: List[str] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    assigned_to: Optional[List[str]] = None


class TaskOut(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    due_date: Optional[str] = None
    tags: List[str] = []
    assigned_to: List[str] = []
    can_access: List[str] = []
    created_by_id: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TaskListOut(BaseModel):
    items: List[TaskOut]
    total: int
    page: int
    page_size: int
    total_pages: int


class AccessRevoke(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)


class AccessListOut(BaseModel):
    task_id: str
    can_access: List[str]


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class CommentOut(BaseModel):
    id: str
    task_id: str
    author_id: str
    author_name: str = ""
    content: str
    created_at: Optional[str] = None


class ActivityOut(BaseModel):
    id: str
    task_id: str
    actor_id: str
    actor_name: str = ""
    type: str
    data: Dict[str, Any] = {}
    timestamp: Optional[str] = None
    description: str


class TimelineDayOut(BaseModel):
    date: str
    entries: List[ActivityOut]


class TimelineOut(BaseModel):
    task_id: str
    timezone: str
    days: List[TimelineDayOut]


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def _value(v) -> str:
    return getattr(v, "value", v)


def _task_to_out(task: Task) -> TaskOut:
    return TaskOut(
        id=task.id,
        title=task.title,
        description=task.description,
        status=_value(task.status),
        priority=_value(task.priority),
        due_date=_ts(task.due_date),
        tags=list(task.tags or []),
        assigned_to=task.assigned_to,
        can_access=task.can_access,
        created_by_id=task.created_by_id,
        created_at=_ts(task.created_at),
        updated_at=_ts(task.updated_at),
    )


def _comment_to_out(comment: TaskComment, author_name: str) -> CommentOut:
    return CommentOut(
        id=comment.id,
        task_id=comment.task_id,
        author_id=comment.author_id,
        author_name=author_name,
        content=comment.content,
        created_at=_ts(comment.created_at),
    )


def _activity_to_out(record: TaskActivity, names: Dict[str, str]) -> ActivityOut:
    return ActivityOut(
        id=record.id,
        task_id=record.task_id,
        actor_id=record.actor_id,
        actor_name=names.get(record.actor_id, ""),
        type=_value(record.type),
        data=record.data or {},
        timestamp=_ts(record.timestamp),
        description=describe(record, names),
    )


def _flag_audit_failure(response: Response, recorder: ActivityRecorder) -> None:
    if recorder.failed:
        response.headers[AUDIT_WARNING_HEADER] = "activity log write failed"


async def _load_task(store: TaskStore, task_id: str) -> Task:
    task = await store.get(task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


async def _load_visible_task(
    store: TaskStore, policy: RolePolicy, principal: Principal, task_id: str,
) -> Task:
    task = await _load_task(store, task_id)
    if not can_view(policy, principal, task):
        raise NotAuthorized("Not authorized to access this task")
    return task


async def _ensure_users_exist(directory: UserDirectory, user_ids: List[str]) -> None:
    found = await directory.get_users(user_ids)
    for user_id in user_ids:
        if user_id not in found:
            raise NotFound(f"User {user_id} not found")


async def _display_names(directory: UserDirectory, records: List[TaskActivity]) -> Dict[str, str]:
    ids = [r.actor_id for r in records] + assignment_user_ids(records)
    users = await directory.get_users(ids)
    return {uid: (u.display_name or u.email) for uid, u in users.items()}


# ============================================================
# TASKS
# ============================================================

@router.get("", response_model=TaskListOut)
async def list_tasks(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100),
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    search: Optional[str] = None,
    sort_by: str = Query(default="created_at", pattern="^(created_at|updated_at|due_date|priority|status|title)$"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """List tasks the principal can access; the top role sees every task"""
    accessible_to = None if policy.is_top_role(principal) else principal.id
    tasks, total = await TaskStore(db).list_tasks(
        accessible_to=accessible_to,
        status=status,
        priority=priority,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return TaskListOut(
        items=[_task_to_out(t) for t in tasks],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.post("", response_model=TaskOut, status_code=201)
async def create_task(
    data: TaskCreate,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a task; its access list is seeded from creator, assignees and their superiors"""
    if not can_create(policy, principal):
        raise NotAuthorized("The top role has read-only access to tasks")

    directory = UserDirectory(db)
    store = TaskStore(db)
    assignees = list(dict.fromkeys(data.assigned_to))
    await _ensure_users_exist(directory, assignees)

    task = Task(
        title=data.title,
        description=data.description,
        status=data.status,
        priority=data.priority,
        due_date=data.due_date,
        tags=data.tags,
        created_by_id=principal.id,
        assignee_links=[],
        access_entries=[],
    )
    db.add(task)
    await db.flush()
    await store.set_assignees(task, assignees)
    await AccessListMaintainer(HierarchyWalker(directory), store).grant_initial(task, assignees)
    await db.commit()
    task_id = task.id
    logger.info(f"Task {task_id} created by {principal.id}")

    recorder = ActivityRecorder(ActivityStore(db))
    await recorder.record_creation(await store.get(task_id), principal.id)
    _flag_audit_failure(response, recorder)
    return _task_to_out(await store.get(task_id))


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Get a single task"""
    return _task_to_out(await _load_visible_task(TaskStore(db), policy, principal, task_id))


@router.patch("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Update task fields and, for hierarchy leads, its assignees"""
    directory = UserDirectory(db)
    store = TaskStore(db)
    task = await _load_visible_task(store, policy, principal, task_id)
    if not can_mutate(policy, principal, task):
        raise NotAuthorized("Not authorized to modify this task")

    changes = data.model_dump(exclude_unset=True)
    old = task_snapshot(task)

    if "assigned_to" in changes:
        if not can_reassign(policy, principal, task):
            raise NotAuthorized("Not authorized to reassign this task")
        assignees = list(dict.fromkeys(changes.pop("assigned_to") or []))
        await _ensure_users_exist(directory, assignees)
        await AccessListMaintainer(HierarchyWalker(directory), store).extend_access_list(task, assignees)
        await store.set_assignees(task, assignees)

    for field, value in changes.items():
        if value is None and field in _REQUIRED_FIELDS:
            continue
        if field == "tags" and value is None:
            value = []
        setattr(task, field, value)

    await db.commit()
    task = await store.get(task_id)

    recorder = ActivityRecorder(ActivityStore(db))
    await recorder.record_changes(task_id, principal.id, old, task_snapshot(task))
    _flag_audit_failure(response, recorder)
    return _task_to_out(await store.get(task_id))


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a task together with its comments, access list and activity"""
    store = TaskStore(db)
    task = await _load_visible_task(store, policy, principal, task_id)
    if not can_mutate(policy, principal, task):
        raise NotAuthorized("Not authorized to delete this task")

    await ActivityStore(db).delete_for_task(task_id)
    await store.delete(task_id)
    await db.commit()
    logger.info(f"Task {task_id} deleted by {principal.id}")
    return {"message": "Task deleted", "id": task_id}


# ============================================================
# ACCESS LIST
# ============================================================

@router.post("/{task_id}/access/revoke", response_model=AccessListOut)
async def revoke_task_access(
    task_id: str,
    data: AccessRevoke,
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Remove users from a task's access list; creator and assignees are protected"""
    directory = UserDirectory(db)
    store = TaskStore(db)
    task = await _load_visible_task(store, policy, principal, task_id)
    if not can_revoke(policy, principal, task):
        raise NotAuthorized("Not authorized to revoke access on this task")

    remaining = await AccessListMaintainer(HierarchyWalker(directory), store).revoke_access(task, data.user_ids)
    await db.commit()
    return AccessListOut(task_id=task_id, can_access=remaining)


# ============================================================
# COMMENTS
# ============================================================

@router.get("/{task_id}/comments", response_model=List[CommentOut])
async def list_comments(
    task_id: str,
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """List comments on a task, newest first"""
    await _load_visible_task(TaskStore(db), policy, principal, task_id)
    comments = await CommentStore(db).list_for_task(task_id)
    return [
        _comment_to_out(c, (c.author.display_name or c.author.email) if c.author else "")
        for c in comments
    ]


@router.post("/{task_id}/comments", response_model=CommentOut, status_code=201)
async def add_comment(
    task_id: str,
    data: CommentCreate,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Add a comment; only members of the task's access list may comment"""
    task = await _load_visible_task(TaskStore(db), policy, principal, task_id)
    if not can_comment(policy, principal, task):
        raise NotAuthorized("Not authorized to comment on this task")

    comment = await CommentStore(db).add(task_id, principal.id, data.content)
    await db.commit()
    out = _comment_to_out(comment, principal.display_name or principal.email)

    recorder = ActivityRecorder(ActivityStore(db))
    await recorder.record_comment_added(task_id, principal.id, out.id)
    _flag_audit_failure(response, recorder)
    return out


# ============================================================
# ACTIVITY
# ============================================================

@router.get("/{task_id}/activity", response_model=List[ActivityOut])
async def get_task_activity(
    task_id: str,
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Activity trail for a task, newest first"""
    await _load_visible_task(TaskStore(db), policy, principal, task_id)
    records = await list_activity(ActivityStore(db), task_id)
    names = await _display_names(UserDirectory(db), records)
    return [_activity_to_out(r, names) for r in records]


@router.get("/{task_id}/activity/timeline", response_model=TimelineOut)
async def get_task_timeline(
    task_id: str,
    tz: Optional[str] = Query(default=None, description="IANA timezone for day boundaries"),
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Activity trail grouped by calendar day, newest day first"""
    tz_name = tz or ACTIVITY_TIMEZONE
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(status_code=400, detail=f"Unknown timezone: {tz_name}")

    await _load_visible_task(TaskStore(db), policy, principal, task_id)
    records = await list_activity(ActivityStore(db), task_id)
    names = await _display_names(UserDirectory(db), records)
    return TimelineOut(
        task_id=task_id,
        timezone=tz_name,
        days=[
            TimelineDayOut(date=day.isoformat(), entries=[_activity_to_out(r, names) for r in entries])
            for day, entries in group_by_day(records, zone).items()
        ],
    )
