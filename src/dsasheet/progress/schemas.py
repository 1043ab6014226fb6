"""Request/response schemas for progress endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from dsasheet.db.models import Difficulty, ProgressStatus


class StatusUpdateRequest(BaseModel):
    status: ProgressStatus


class BatchItem(BaseModel):
    problem_id: int = Field(..., ge=1)
    status: ProgressStatus


class BatchUpdateRequest(BaseModel):
    """Batch status update. The upper bound comes from settings and is checked by the ledger."""

    updates: list[BatchItem] = Field(..., min_length=1)


class ProgressResponse(BaseModel):
    id: str
    user_id: int
    problem_id: int
    status: ProgressStatus
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ProblemBrief(BaseModel):
    id: int
    topic_id: int
    title: str
    slug: str
    difficulty: Difficulty
    url: str | None = None
    is_active: bool

    model_config = {"from_attributes": True}


class ProgressWithProblem(ProgressResponse):
    problem: ProblemBrief


class ProgressListResponse(BaseModel):
    progress: list[ProgressWithProblem]
    count: int


class BatchUpdateResponse(BaseModel):
    updated: int
    progress: list[ProgressResponse]


class ResetResponse(BaseModel):
    reset: bool
    message: str
    progress: ProgressResponse | None = None


class TopicSummary(BaseModel):
    topic_id: int
    title: str
    slug: str
    total: int
    completed: int
    remaining: int
    completion_rate: int


class OverallSummary(BaseModel):
    total_topics: int
    total_problems: int
    total_completed: int
    overall_completion_rate: int


class SummaryResponse(BaseModel):
    overall: OverallSummary
    by_topic: list[TopicSummary]
