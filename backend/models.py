# models.py — Database models for the task dashboard
# - UUID string primary keys everywhere
# - Users carry an ordered role set and a single senior-person link
# - Task ACL materialised as rows so grants are atomic set inserts
# - Append-only task activity log (deleted only with its task)

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ============================================================
# ENUMS
# ============================================================

class TaskStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class TaskPriority(str, PyEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActivityType(str, PyEnum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGE = "status_change"
    COMMENT_ADDED = "comment_added"
    ASSIGNED = "assigned"
    DELETED = "deleted"


# ============================================================
# ROLES & USERS
# ============================================================

class Role(Base):
    __tablename__ = "roles"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String(50), unique=True, nullable=False, index=True)
    description = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class UserRoleLink(Base):
    """Ordered role membership"""
    __tablename__ = "user_roles"

    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id = Column(String, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    position = Column(Integer, nullable=False, default=0)

    role = relationship("Role", lazy="joined")


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String(50), nullable=False, default="")
    password_hash = Column(String, nullable=False)
    # Direct superior. Not enforced acyclic; walkers must guard.
    senior_person_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    role_links = relationship(
        "UserRoleLink",
        order_by="UserRoleLink.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def roles(self):
        return [link.role for link in self.role_links if link.role is not None]


# ============================================================
# TASKS
# ============================================================

class Task(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        SQLEnum(TaskStatus, values_callable=_enum_values),
        default=TaskStatus.OPEN, nullable=False, index=True,
    )
    priority = Column(
        SQLEnum(TaskPriority, values_callable=_enum_values),
        default=TaskPriority.MEDIUM, nullable=False,
    )
    due_date = Column(DateTime(timezone=True), nullable=True, index=True)
    tags = Column(JSON, default=list)
    created_by_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    assignee_links = relationship(
        "TaskAssignee",
        order_by="TaskAssignee.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    access_entries = relationship(
        "TaskAccess",
        order_by="TaskAccess.granted_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def assigned_to(self):
        return [link.user_id for link in self.assignee_links]

    @property
    def can_access(self):
        return [entry.user_id for entry in self.access_entries]


class TaskAssignee(Base):
    __tablename__ = "task_assignees"

    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    position = Column(Integer, nullable=False, default=0)


class TaskAccess(Base):
    """Materialised ACL row; the composite key makes grants idempotent"""
    __tablename__ = "task_access"

    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    granted_at = Column(DateTime(timezone=True), default=utcnow)


class TaskComment(Base):
    __tablename__ = "task_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    author = relationship("User", lazy="joined")


# ============================================================
# TASK ACTIVITY (Append-only, never updated)
# ============================================================

class TaskActivity(Base):
    __tablename__ = "task_activities"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    actor_id = Column(String, ForeignKey("users.id"), nullable=False)
    type = Column(SQLEnum(ActivityType, values_callable=_enum_values), nullable=False, index=True)
    data = Column(JSON, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)

    actor = relationship("User", lazy="joined")

    __table_args__ = (
        Index("idx_activity_task_timestamp", "task_id", "timestamp"),
    )
