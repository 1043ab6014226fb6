"""Audit API: read-only /api/v1/audit/* endpoints for administrators."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dsasheet.audit.schemas import AuditEntryResponse, AuditListResponse
from dsasheet.audit.service import actor_activity, entity_history, recent_activity
from dsasheet.auth.dependencies import require_admin
from dsasheet.database import get_session
from dsasheet.db.models import AuditEntry, EntityType, User

router = APIRouter(prefix="/api/v1/audit", tags=["Audit"])


def _listing(entries: list[AuditEntry]) -> AuditListResponse:
    return AuditListResponse(
        entries=[AuditEntryResponse.model_validate(e) for e in entries],
        count=len(entries),
    )


@router.get("/recent", response_model=AuditListResponse)
async def recent(
    limit: int | None = Query(None, ge=1),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> AuditListResponse:
    """Latest entries across all administrators."""
    return _listing(await recent_activity(db, limit))


@router.get("/actors/{actor_id}", response_model=AuditListResponse)
async def by_actor(
    actor_id: int,
    limit: int | None = Query(None, ge=1),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> AuditListResponse:
    return _listing(await actor_activity(db, actor_id, limit))


@router.get("/entities/{entity_type}/{entity_id}", response_model=AuditListResponse)
async def by_entity(
    entity_type: EntityType,
    entity_id: str,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> AuditListResponse:
    """Complete history of one topic, problem or account."""
    return _listing(await entity_history(db, entity_type, entity_id))
