"""ORM models.

Table layout mirrors alembic/versions/ (001 initial schema, 002 problem tags).
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dsasheet.db.base import Base, BigIntPK, JSONDocument, utcnow


class Role(enum.StrEnum):
    """Closed set of account authority labels."""

    USER = "user"
    ADMIN = "admin"


class ProgressStatus(enum.StrEnum):
    NOT_STARTED = "not_started"
    COMPLETED = "completed"


class Difficulty(enum.StrEnum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class AuditAction(enum.StrEnum):
    CREATE_PROBLEM = "create_problem"
    UPDATE_PROBLEM = "update_problem"
    DELETE_PROBLEM = "delete_problem"
    CREATE_TOPIC = "create_topic"
    UPDATE_TOPIC = "update_topic"
    DELETE_TOPIC = "delete_topic"
    PROMOTE_USER = "promote_user"
    DEMOTE_USER = "demote_user"
    ACTIVATE_USER = "activate_user"
    DEACTIVATE_USER = "deactivate_user"


class EntityType(enum.StrEnum):
    PROBLEM = "problem"
    TOPIC = "topic"
    USER = "user"


def _in(values: type[enum.StrEnum]) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class User(Base):
    """An account: identity plus authority. Never physically deleted."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(f"role IN ({_in(Role)})", name="role"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=Role.USER, server_default=Role.USER.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


# ---------------------------------------------------------------------------
# Content catalog
# ---------------------------------------------------------------------------


class Topic(Base):
    __tablename__ = "topics"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )


class Problem(Base):
    __tablename__ = "problems"
    __table_args__ = (
        CheckConstraint(f"difficulty IN ({_in(Difficulty)})", name="difficulty"),
        Index("ix_problems_topic_id_order", "topic_id", "order"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    topic_id: Mapped[int] = mapped_column(ForeignKey("topics.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    difficulty: Mapped[str] = mapped_column(String(8), nullable=False)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list, server_default="[]")
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    topic: Mapped[Topic] = relationship("Topic", lazy="joined")


# ---------------------------------------------------------------------------
# Progress ledger
# ---------------------------------------------------------------------------


class UserProgress(Base):
    """Completion state of one account on one problem.

    The unique constraint on (user_id, problem_id) is what every ledger
    write relies on: writes go through INSERT ... ON CONFLICT DO UPDATE.
    """

    __tablename__ = "user_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "problem_id", name="uq_user_progress_user_problem"),
        CheckConstraint(f"status IN ({_in(ProgressStatus)})", name="status"),
        CheckConstraint(
            "(status = 'completed') = (completed_at IS NOT NULL)",
            name="completed_at_iff_completed",
        ),
        Index("ix_user_progress_user_id_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    problem_id: Mapped[int] = mapped_column(ForeignKey("problems.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ProgressStatus.NOT_STARTED)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class AuditEntry(Base):
    """Append-only record of a privileged mutation."""

    __tablename__ = "admin_logs"
    __table_args__ = (
        CheckConstraint(f"action IN ({_in(AuditAction)})", name="action"),
        CheckConstraint(f"entity_type IS NULL OR entity_type IN ({_in(EntityType)})", name="entity_type"),
        Index("ix_admin_logs_actor_id_created_at", "actor_id", "created_at"),
        Index("ix_admin_logs_entity", "entity_type", "entity_id", "created_at"),
        Index("ix_admin_logs_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    actor: Mapped[User] = relationship("User", lazy="joined")
