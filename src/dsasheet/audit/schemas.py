"""Response schemas for audit endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from dsasheet.db.models import AuditAction, EntityType


class ActorBrief(BaseModel):
    id: int
    name: str
    email: str

    model_config = {"from_attributes": True}


class AuditEntryResponse(BaseModel):
    id: int
    actor_id: int
    action: AuditAction
    entity_id: str | None = None
    entity_type: EntityType | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="details")
    created_at: datetime
    actor: ActorBrief | None = None

    model_config = {"from_attributes": True, "populate_by_name": True}


class AuditListResponse(BaseModel):
    entries: list[AuditEntryResponse]
    count: int
