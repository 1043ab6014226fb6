"""Progress API: /api/v1/progress/* endpoints, all scoped to the calling account."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from dsasheet.auth.dependencies import get_current_user
from dsasheet.config import get_settings
from dsasheet.database import get_session
from dsasheet.db.models import ProgressStatus, User
from dsasheet.progress.ledger import (
    BatchPreconditionError,
    BatchTooLargeError,
    ProblemNotFoundError,
    ProgressLedger,
    ProgressUpdate,
)
from dsasheet.progress.schemas import (
    BatchUpdateRequest,
    BatchUpdateResponse,
    ProblemBrief,
    ProgressListResponse,
    ProgressResponse,
    ProgressWithProblem,
    ResetResponse,
    StatusUpdateRequest,
    SummaryResponse,
)

router = APIRouter(prefix="/api/v1/progress", tags=["Progress"])


@router.get("", response_model=ProgressListResponse)
async def list_my_progress(
    status: ProgressStatus | None = None,
    topic_id: int | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProgressListResponse:
    """All of the caller's progress records, optionally filtered."""
    rows = await ProgressLedger(db).list_progress(user.id, status=status, topic_id=topic_id)
    items = [
        ProgressWithProblem(
            **ProgressResponse.model_validate(progress).model_dump(),
            problem=ProblemBrief.model_validate(problem),
        )
        for progress, problem in rows
    ]
    return ProgressListResponse(progress=items, count=len(items))


@router.get("/summary", response_model=SummaryResponse)
async def my_summary(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> SummaryResponse:
    """Completion totals per topic and overall."""
    return SummaryResponse.model_validate(await ProgressLedger(db).summary(user.id))


@router.post("/batch", response_model=BatchUpdateResponse)
async def batch_update(
    body: BatchUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> BatchUpdateResponse:
    """Apply several status changes. Rejected as a whole if any problem is missing or retired."""
    updates = [ProgressUpdate(problem_id=item.problem_id, status=item.status) for item in body.updates]
    try:
        result = await ProgressLedger(db).batch_update(
            user.id, updates, max_batch_size=get_settings().progress_batch_max_size
        )
    except BatchTooLargeError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except BatchPreconditionError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": str(e), "invalid_problem_ids": e.invalid_ids},
        ) from e
    return BatchUpdateResponse(
        updated=result.updated,
        progress=[ProgressResponse.model_validate(r) for r in result.records],
    )


@router.post("/{problem_id}/complete", response_model=ProgressResponse)
async def mark_complete(
    problem_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProgressResponse:
    """Mark a problem completed. Safe to repeat."""
    try:
        record = await ProgressLedger(db).mark_completed(user.id, problem_id)
    except ProblemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return ProgressResponse.model_validate(record)


@router.put("/{problem_id}", response_model=ProgressResponse)
async def set_status(
    problem_id: int,
    body: StatusUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProgressResponse:
    try:
        record = await ProgressLedger(db).update_status(user.id, problem_id, body.status)
    except ProblemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return ProgressResponse.model_validate(record)


@router.delete("/{problem_id}", response_model=ResetResponse)
async def reset_progress(
    problem_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ResetResponse:
    """Reset a problem to not-started. A missing record is not an error."""
    try:
        record = await ProgressLedger(db).reset(user.id, problem_id)
    except ProblemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    if record is None:
        return ResetResponse(reset=False, message="No progress to reset")
    return ResetResponse(reset=True, message="Progress reset", progress=ProgressResponse.model_validate(record))
