# tests/test_activity_feed.py — Day grouping and activity descriptions
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from activity_feed import assignment_user_ids, describe, group_by_day


def record(kind, data=None, ts=None):
    return {"type": kind, "data": data, "timestamp": ts or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)}


def test_describe_templates():
    assert describe(record("created")) == "created this task"
    assert describe(record("updated", {"field": "title"})) == "updated title"
    assert describe(record("status_change", {"from": "open", "to": "completed"})) == \
        "changed status from open to completed"
    assert describe(record("comment_added", {"commentId": "c1"})) == "added a comment"
    assert describe(record("deleted")) == "deleted this task"


def test_describe_fallbacks():
    assert describe(record("updated", {})) == "updated task details"
    assert describe(record("status_change", {"to": "blocked"})) == "changed status from unknown to blocked"
    assert describe(record("assigned", {})) == "changed task assignment"
    assert describe(record("archived")) == "performed an action"
    assert describe(record("updated", "not-a-mapping")) == "updated task details"


def test_describe_assignment_uses_names():
    names = {"u1": "Erin", "u2": "Dana"}
    assert describe(record("assigned", {"added": ["u1", "u2"]}), names) == "assigned to Erin, Dana"
    assert describe(record("assigned", {"removed": ["u1"]}), names) == "unassigned Erin"
    assert describe(record("assigned", {"added": ["u2"], "removed": ["u1"]}), names) == \
        "assigned to Dana and unassigned Erin"
    assert describe(record("assigned", {"added": ["u9"]}), names) == "assigned to u9"


def test_group_by_day_keeps_newest_first_order():
    records = [
        record("updated", {"field": "title"}, datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc)),
        record("created", None, datetime(2024, 5, 2, 8, 0, tzinfo=timezone.utc)),
        record("comment_added", None, datetime(2024, 5, 1, 23, 0, tzinfo=timezone.utc)),
    ]
    groups = group_by_day(records, ZoneInfo("UTC"))

    assert list(groups) == [date(2024, 5, 2), date(2024, 5, 1)]
    assert [r["type"] for r in groups[date(2024, 5, 2)]] == ["updated", "created"]


def test_group_by_day_respects_timezone():
    late = record("created", None, datetime(2024, 5, 1, 23, 30, tzinfo=timezone.utc))
    groups = group_by_day([late], ZoneInfo("Asia/Tokyo"))
    assert list(groups) == [date(2024, 5, 2)]


def test_group_by_day_treats_naive_as_utc():
    naive = record("created", None, datetime(2024, 5, 1, 23, 30))
    assert list(group_by_day([naive], ZoneInfo("UTC"))) == [date(2024, 5, 1)]


def test_group_by_day_empty():
    assert group_by_day([], ZoneInfo("UTC")) == {}


def test_assignment_user_ids_are_unique_and_ordered():
    records = [
        record("assigned", {"added": ["u1", "u2"], "removed": ["u3"]}),
        record("assigned", {"added": ["u2"]}),
        record("updated", {"field": "title"}),
        record("assigned", None),
    ]
    assert assignment_user_ids(records) == ["u1", "u2", "u3"]
