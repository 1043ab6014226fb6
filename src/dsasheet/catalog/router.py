"""Topic and problem endpoints.

Reads are public and enriched with the caller's completion state when they
send a valid token. Writes are admin only and each one is audited.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from dsasheet.auth.dependencies import get_current_user_optional, require_admin
from dsasheet.catalog import service
from dsasheet.catalog.schemas import (
    ProblemCreateRequest,
    ProblemDetailResponse,
    ProblemResponse,
    ProblemStatsResponse,
    ProblemUpdateRequest,
    TagCount,
    TagListResponse,
    TopicCreateRequest,
    TopicDetailResponse,
    TopicListResponse,
    TopicProblemsResponse,
    TopicResponse,
    TopicUpdateRequest,
)
from dsasheet.catalog.service import ContentNotFoundError, ContentStateError, SlugTakenError
from dsasheet.database import get_session
from dsasheet.db.models import Role, User
from dsasheet.progress.ledger import ProgressLedger

router = APIRouter(tags=["Catalog"])


def _content_error(e: Exception) -> HTTPException:
    if isinstance(e, ContentNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SlugTakenError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


_CONTENT_ERRORS = (ContentNotFoundError, ContentStateError, SlugTakenError)
_NULLABLE_FIELDS = {"description", "url"}


def _is_admin(user: User | None) -> bool:
    return user is not None and user.role == Role.ADMIN


def _changes(body: TopicUpdateRequest | ProblemUpdateRequest) -> dict:
    """Fields the client sent. An explicit null only clears nullable columns."""
    changes = {
        field: value
        for field, value in body.model_dump(exclude_unset=True).items()
        if value is not None or field in _NULLABLE_FIELDS
    }
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    return changes


# ---------------------------------------------------------------------------
# Public reads
# ---------------------------------------------------------------------------


@router.get("/api/v1/topics", response_model=TopicListResponse)
async def list_topics(
    user: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_session),
) -> TopicListResponse:
    """Active topics in display order. Public; adds completion counts if auth'd."""
    topics = await service.list_topics(db)
    counts = await service.problem_counts_by_topic(db)
    completed = await service.completed_counts_by_topic(db, user.id) if user else None

    result = []
    for topic in topics:
        item = TopicResponse.model_validate(topic)
        item.problem_count = counts.get(topic.id, 0)
        if completed is not None:
            item.completed = completed.get(topic.id, 0)
        result.append(item)
    return TopicListResponse(topics=result)


@router.get("/api/v1/topics/{topic_id}/problems", response_model=TopicProblemsResponse)
async def list_topic_problems(
    topic_id: int,
    tag: str | None = None,
    user: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_session),
) -> TopicProblemsResponse:
    topic = await service.get_topic(db, topic_id)
    if topic is None:
        raise HTTPException(status_code=404, detail="Topic not found")
    problems = await service.list_topic_problems(db, topic_id, tag=tag)

    done = set(await ProgressLedger(db).completed_problem_ids(user.id)) if user else None
    items = []
    for problem in problems:
        item = ProblemResponse.model_validate(problem)
        if done is not None:
            item.completed = problem.id in done
        items.append(item)

    topic_view = TopicResponse.model_validate(topic)
    topic_view.problem_count = len(items)
    return TopicProblemsResponse(topic=topic_view, problems=items)


@router.get("/api/v1/topics/{identifier}", response_model=TopicDetailResponse)
async def get_topic(
    identifier: str,
    user: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_session),
) -> TopicDetailResponse:
    """One topic by id or slug. Retired topics are visible to admins only."""
    topic = await service.find_topic(db, identifier, include_retired=_is_admin(user))
    if topic is None:
        raise HTTPException(status_code=404, detail="Topic not found")
    item = TopicResponse.model_validate(topic)
    item.problem_count = (await service.problem_counts_by_topic(db)).get(topic.id, 0)
    if user is not None:
        item.completed = (await service.completed_counts_by_topic(db, user.id)).get(topic.id, 0)
    return TopicDetailResponse(topic=item)


@router.get("/api/v1/problems/tags", response_model=TagListResponse)
async def list_tags(db: AsyncSession = Depends(get_session)) -> TagListResponse:
    """Tags in use on active problems, most common first."""
    counts = await service.tag_counts(db)
    return TagListResponse(tags=[TagCount(tag=tag, count=count) for tag, count in counts])


@router.get("/api/v1/problems/stats", response_model=ProblemStatsResponse)
async def problem_stats(db: AsyncSession = Depends(get_session)) -> ProblemStatsResponse:
    return ProblemStatsResponse.model_validate(await service.problem_stats(db))


@router.get("/api/v1/problems/{identifier}", response_model=ProblemDetailResponse)
async def get_problem(
    identifier: str,
    user: User | None = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_session),
) -> ProblemDetailResponse:
    """One problem by id or slug, with its topic. Retired problems are visible to admins only."""
    problem = await service.find_problem(db, identifier, include_retired=_is_admin(user))
    if problem is None:
        raise HTTPException(status_code=404, detail="Problem not found")
    item = ProblemResponse.model_validate(problem)
    if user is not None:
        item.completed = problem.id in set(await ProgressLedger(db).completed_problem_ids(user.id))
    return ProblemDetailResponse(problem=item, topic=TopicResponse.model_validate(problem.topic))


# ---------------------------------------------------------------------------
# Admin: topics
# ---------------------------------------------------------------------------


@router.post("/api/v1/admin/topics", response_model=TopicResponse, status_code=201)
async def create_topic(
    body: TopicCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> TopicResponse:
    try:
        topic = await service.create_topic(db, admin, body.model_dump())
    except _CONTENT_ERRORS as e:
        raise _content_error(e) from e
    return TopicResponse.model_validate(topic)


@router.put("/api/v1/admin/topics/{topic_id}", response_model=TopicResponse)
async def update_topic(
    topic_id: int,
    body: TopicUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> TopicResponse:
    changes = _changes(body)
    try:
        topic = await service.update_topic(db, admin, topic_id, changes)
    except _CONTENT_ERRORS as e:
        raise _content_error(e) from e
    return TopicResponse.model_validate(topic)


@router.delete("/api/v1/admin/topics/{topic_id}", response_model=TopicResponse)
async def delete_topic(
    topic_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> TopicResponse:
    """Soft delete. Refused while the topic still has active problems."""
    try:
        topic = await service.delete_topic(db, admin, topic_id)
    except _CONTENT_ERRORS as e:
        raise _content_error(e) from e
    return TopicResponse.model_validate(topic)


# ---------------------------------------------------------------------------
# Admin: problems
# ---------------------------------------------------------------------------


@router.post("/api/v1/admin/problems", response_model=ProblemResponse, status_code=201)
async def create_problem(
    body: ProblemCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> ProblemResponse:
    try:
        problem = await service.create_problem(db, admin, body.model_dump())
    except _CONTENT_ERRORS as e:
        raise _content_error(e) from e
    return ProblemResponse.model_validate(problem)


@router.put("/api/v1/admin/problems/{problem_id}", response_model=ProblemResponse)
async def update_problem(
    problem_id: int,
    body: ProblemUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> ProblemResponse:
    changes = _changes(body)
    try:
        problem = await service.update_problem(db, admin, problem_id, changes)
    except _CONTENT_ERRORS as e:
        raise _content_error(e) from e
    return ProblemResponse.model_validate(problem)


@router.delete("/api/v1/admin/problems/{problem_id}", response_model=ProblemResponse)
async def delete_problem(
    problem_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> ProblemResponse:
    """Retire a problem. Existing progress on it is kept but no longer counted."""
    try:
        problem = await service.delete_problem(db, admin, problem_id)
    except _CONTENT_ERRORS as e:
        raise _content_error(e) from e
    return ProblemResponse.model_validate(problem)
