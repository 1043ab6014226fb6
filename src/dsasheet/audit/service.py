"""
Audit log: append-only record of privileged mutations.

Call ``record_action`` *after* the primary change has been committed. The
append runs in its own commit and is best-effort: if the store rejects it the
failure is logged and swallowed so the user-facing action still succeeds.
There is deliberately no update or delete function in this module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from dsasheet.config import get_settings
from dsasheet.database import get_session_factory
from dsasheet.db.models import AuditAction, AuditEntry, EntityType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def record_action(
    actor_id: int,
    action: AuditAction,
    entity_id: int | str | None = None,
    entity_type: EntityType | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditEntry | None:
    """Append one audit entry in its own session. Returns it, or None if the append failed."""
    entity_ref = str(entity_id) if entity_id is not None else None
    entry = AuditEntry(
        actor_id=actor_id,
        action=action,
        entity_id=entity_ref,
        entity_type=entity_type,
        details=metadata or {},
    )
    try:
        async with get_session_factory()() as db:
            db.add(entry)
            await db.commit()
    except (SQLAlchemyError, OSError):
        logger.error(
            "audit_append_failed",
            actor_id=actor_id,
            action=str(action),
            entity_type=str(entity_type) if entity_type else None,
            entity_id=entity_ref,
            exc_info=True,
        )
        return None

    logger.info(
        "audit_recorded",
        audit_id=entry.id,
        actor_id=actor_id,
        action=str(action),
        entity_type=str(entity_type) if entity_type else None,
        entity_id=entity_ref,
    )
    return entry


def _clamp(limit: int | None, default: int) -> int:
    ceiling = get_settings().audit_max_page_size
    if limit is None:
        return min(default, ceiling)
    return max(1, min(limit, ceiling))


async def actor_activity(db: AsyncSession, actor_id: int, limit: int | None = None) -> list[AuditEntry]:
    """Most recent entries written by one actor, newest first."""
    result = await db.execute(
        select(AuditEntry)
        .where(AuditEntry.actor_id == actor_id)
        .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
        .limit(_clamp(limit, get_settings().audit_page_size))
    )
    return list(result.scalars().all())


async def entity_history(db: AsyncSession, entity_type: EntityType, entity_id: int | str) -> list[AuditEntry]:
    """Full history of one affected entity, newest first."""
    result = await db.execute(
        select(AuditEntry)
        .where(AuditEntry.entity_type == entity_type, AuditEntry.entity_id == str(entity_id))
        .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
    )
    return list(result.scalars().all())


async def recent_activity(db: AsyncSession, limit: int | None = None) -> list[AuditEntry]:
    """Most recent entries across all actors."""
    result = await db.execute(
        select(AuditEntry)
        .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
        .limit(_clamp(limit, get_settings().audit_recent_page_size))
    )
    return list(result.scalars().all())
