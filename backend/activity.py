# activity.py — Append-only task activity recorder
# Recording is best-effort: the task mutation is already committed when
# records are written, and a failed write is logged rather than raised.
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from errors import AuditWriteFailed
from models import Task, TaskActivity, ActivityType, utcnow
from stores import ActivityStore

logger = logging.getLogger("taskscope.activity")

# Never diffed: identity, bookkeeping and the derived ACL
IGNORED_FIELDS = {"id", "created_at", "updated_at", "can_access", "created_by", "created_by_id"}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def task_snapshot(task: Task) -> Dict[str, Any]:
    """Comparable top-level view of a task"""
    return {
        "title": task.title,
        "description": task.description,
        "status": _plain(task.status),
        "priority": _plain(task.priority),
        "due_date": _plain(task.due_date),
        "tags": list(task.tags or []),
        "assigned_to": list(task.assigned_to),
    }


def _serialized(value: Any) -> str:
    return json.dumps(_plain(value), sort_keys=True, default=str)


def changed_fields(old: Dict[str, Any], new: Dict[str, Any]) -> List[str]:
    """Top-level fields whose serialized value differs, in a stable order"""
    fields = list(dict.fromkeys([*old.keys(), *new.keys()]))
    return [
        name for name in fields
        if name not in IGNORED_FIELDS and _serialized(old.get(name)) != _serialized(new.get(name))
    ]


class ActivityRecorder:
    def __init__(self, store: ActivityStore):
        self.store = store
        self.failed = False

    def _entry(self, task_id: str, actor_id: str, activity_type: ActivityType,
               data: Optional[dict] = None, timestamp: Optional[datetime] = None) -> TaskActivity:
        return TaskActivity(
            task_id=task_id,
            actor_id=actor_id,
            type=activity_type,
            data=data or {},
            timestamp=timestamp or utcnow(),
        )

    async def _write(self, records: List[TaskActivity]) -> List[TaskActivity]:
        if not records:
            return []
        try:
            await self.store.append(records)
        except AuditWriteFailed as exc:
            self.failed = True
            logger.warning(
                f"Activity write failed for task {records[0].task_id} "
                f"({len(records)} record(s)): {exc}"
            )
            return []
        return records

    async def record_creation(self, task: Task, actor_id: str) -> List[TaskActivity]:
        now = utcnow()
        records = [self._entry(task.id, actor_id, ActivityType.CREATED, timestamp=now)]
        if task.assigned_to:
            records.append(self._entry(
                task.id, actor_id, ActivityType.ASSIGNED,
                {"added": list(task.assigned_to)}, now,
            ))
        return await self._write(records)

    async def record_field_update(self, task_id: str, actor_id: str, field_name: str) -> List[TaskActivity]:
        return await self._write([
            self._entry(task_id, actor_id, ActivityType.UPDATED, {"field": field_name})
        ])

    async def record_status_change(self, task_id: str, actor_id: str, from_status, to_status) -> List[TaskActivity]:
        return await self._write([
            self._entry(task_id, actor_id, ActivityType.STATUS_CHANGE,
                        {"from": _plain(from_status), "to": _plain(to_status)})
        ])

    async def record_comment_added(self, task_id: str, actor_id: str, comment_id: str) -> List[TaskActivity]:
        return await self._write([
            self._entry(task_id, actor_id, ActivityType.COMMENT_ADDED, {"commentId": comment_id})
        ])

    async def record_assignment_change(
        self, task_id: str, actor_id: str,
        added: Iterable[str] = (), removed: Iterable[str] = (),
    ) -> List[TaskActivity]:
        return await self._write([
            self._entry(task_id, actor_id, ActivityType.ASSIGNED, _assignment_payload(added, removed))
        ])

    def build_change_records(self, task_id: str, actor_id: str,
                             old: Dict[str, Any], new: Dict[str, Any]) -> List[TaskActivity]:
        now = utcnow()
        records = []
        for name in changed_fields(old, new):
            if name == "status":
                records.append(self._entry(
                    task_id, actor_id, ActivityType.STATUS_CHANGE,
                    {"from": _plain(old.get("status")), "to": _plain(new.get("status"))}, now,
                ))
            elif name == "assigned_to":
                before = list(old.get("assigned_to") or [])
                after = list(new.get("assigned_to") or [])
                added = [uid for uid in after if uid not in before]
                removed = [uid for uid in before if uid not in after]
                if added or removed:
                    records.append(self._entry(
                        task_id, actor_id, ActivityType.ASSIGNED,
                        _assignment_payload(added, removed), now,
                    ))
            else:
                records.append(self._entry(task_id, actor_id, ActivityType.UPDATED, {"field": name}, now))
        return records

    async def record_changes(self, task_id: str, actor_id: str,
                             old: Dict[str, Any], new: Dict[str, Any]) -> List[TaskActivity]:
        """Diff two snapshots into status_change / assigned / updated records"""
        return await self._write(self.build_change_records(task_id, actor_id, old, new))


def _assignment_payload(added: Iterable[str], removed: Iterable[str]) -> dict:
    data = {}
    added, removed = list(added), list(removed)
    if added:
        data["added"] = added
    if removed:
        data["removed"] = removed
    return data
