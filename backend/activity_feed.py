# activity_feed.py — Read side of the task activity log
"""
Presentation helpers for the activity trail: newest-first listing, calendar
day grouping and one-line descriptions. Malformed payloads degrade to the
fallback wording instead of raising.
"""
import os
from collections import OrderedDict
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from stores import ActivityStore

ACTIVITY_TIMEZONE = os.getenv("ACTIVITY_TIMEZONE", "UTC")


async def list_activity(store: ActivityStore, task_id: str) -> List[Any]:
    """Activity for a task, newest first"""
    return await store.list_for_task(task_id)


def _field(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def _type_name(record: Any) -> str:
    value = _field(record, "type", "")
    return getattr(value, "value", value) or ""


def local_date(timestamp: datetime, tz: Optional[ZoneInfo] = None) -> date:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(tz or ZoneInfo(ACTIVITY_TIMEZONE)).date()


def group_by_day(records: Sequence[Any], tz: Optional[ZoneInfo] = None) -> "OrderedDict[date, List[Any]]":
    """Partition records by local calendar date, keeping their order"""
    groups: "OrderedDict[date, List[Any]]" = OrderedDict()
    for record in records:
        day = local_date(_field(record, "timestamp"), tz)
        groups.setdefault(day, []).append(record)
    return groups


def _names_for(value: Any, names: Optional[Mapping[str, str]]) -> str:
    items = value if isinstance(value, (list, tuple)) else [value]
    names = names or {}
    return ", ".join(names.get(str(item), str(item)) for item in items if item)


def describe(record: Any, names: Optional[Mapping[str, str]] = None) -> str:
    data = _field(record, "data") or {}
    if not isinstance(data, Mapping):
        data = {}
    kind = _type_name(record)

    if kind == "created":
        return "created this task"
    if kind == "updated":
        return f"updated {data.get('field') or 'task details'}"
    if kind == "status_change":
        return f"changed status from {data.get('from') or 'unknown'} to {data.get('to') or 'unknown'}"
    if kind == "comment_added":
        return "added a comment"
    if kind == "assigned":
        added = _names_for(data.get("added"), names) if data.get("added") else ""
        removed = _names_for(data.get("removed"), names) if data.get("removed") else ""
        if added and removed:
            return f"assigned to {added} and unassigned {removed}"
        if added:
            return f"assigned to {added}"
        if removed:
            return f"unassigned {removed}"
        return "changed task assignment"
    if kind == "deleted":
        return "deleted this task"
    return "performed an action"


def assignment_user_ids(records: Sequence[Any]) -> List[str]:
    """User ids referenced by assignment payloads, for name lookup"""
    ids: Dict[str, None] = {}
    for record in records:
        data = _field(record, "data") or {}
        if not isinstance(data, Mapping):
            continue
        for key in ("added", "removed"):
            value = data.get(key)
            for item in (value if isinstance(value, (list, tuple)) else [value]):
                if isinstance(item, str) and item:
                    ids.setdefault(item, None)
    return list(ids)
