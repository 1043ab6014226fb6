"""Request/response schemas for topic and problem endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field

from dsasheet.db.models import Difficulty

_SLUG = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


def _normalize_tags(tags: list[str]) -> list[str]:
    """Lowercased, trimmed, blanks dropped, first occurrence kept."""
    seen: dict[str, None] = {}
    for tag in tags:
        cleaned = tag.strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


Tags = Annotated[list[Annotated[str, Field(max_length=50)]], Field(max_length=20), AfterValidator(_normalize_tags)]


class TopicCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, max_length=200, pattern=_SLUG)
    description: str | None = None
    order: int = Field(0, ge=0)


class TopicUpdateRequest(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=200)
    slug: str | None = Field(None, min_length=1, max_length=200, pattern=_SLUG)
    description: str | None = None
    order: int | None = Field(None, ge=0)


class ProblemCreateRequest(BaseModel):
    topic_id: int = Field(..., ge=1)
    title: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, max_length=200, pattern=_SLUG)
    difficulty: Difficulty
    url: str | None = Field(None, max_length=2048)
    order: int = Field(0, ge=0)
    tags: Tags = []


class ProblemUpdateRequest(BaseModel):
    topic_id: int | None = Field(None, ge=1)
    title: str | None = Field(None, min_length=1, max_length=200)
    slug: str | None = Field(None, min_length=1, max_length=200, pattern=_SLUG)
    difficulty: Difficulty | None = None
    url: str | None = Field(None, max_length=2048)
    order: int | None = Field(None, ge=0)
    tags: Tags | None = None


class TopicResponse(BaseModel):
    id: int
    title: str
    slug: str
    description: str | None = None
    order: int
    is_active: bool
    created_at: datetime | None = None
    problem_count: int | None = None
    completed: int | None = None

    model_config = {"from_attributes": True}


class ProblemResponse(BaseModel):
    id: int
    topic_id: int
    title: str
    slug: str
    difficulty: Difficulty
    url: str | None = None
    tags: list[str] = []
    order: int
    is_active: bool
    completed: bool | None = None

    model_config = {"from_attributes": True}


class TopicListResponse(BaseModel):
    topics: list[TopicResponse]


class TopicProblemsResponse(BaseModel):
    topic: TopicResponse
    problems: list[ProblemResponse]


class TopicDetailResponse(BaseModel):
    topic: TopicResponse


class ProblemDetailResponse(BaseModel):
    problem: ProblemResponse
    topic: TopicResponse


class TagCount(BaseModel):
    tag: str
    count: int


class TagListResponse(BaseModel):
    tags: list[TagCount]


class ProblemStatsResponse(BaseModel):
    total: int
    by_difficulty: dict[Difficulty, int]
