"""
Content catalog: topics and problems.

The progress ledger only needs two things from here, ``get_active_problem``
and ``find_unavailable_problem_ids``. The rest is the admin-side content
management whose deletes and edits feed the audit log.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from dsasheet.audit.service import record_action
from dsasheet.db.models import AuditAction, Difficulty, EntityType, Problem, ProgressStatus, Topic, UserProgress

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

    from dsasheet.db.models import User

logger = structlog.get_logger()


class ContentNotFoundError(LookupError):
    """Topic or problem does not exist (or is retired where an active one is required)."""


class ContentStateError(ValueError):
    """Requested change conflicts with the item's current state."""


class SlugTakenError(ValueError):
    """Another topic/problem already uses this slug."""


# ---------------------------------------------------------------------------
# Existence checks used by the progress ledger
# ---------------------------------------------------------------------------


async def get_active_problem(db: AsyncSession, problem_id: int) -> Problem | None:
    """Return the problem if it exists and is active."""
    result = await db.execute(select(Problem).where(Problem.id == problem_id, Problem.is_active.is_(True)))
    return result.scalar_one_or_none()


async def find_unavailable_problem_ids(db: AsyncSession, problem_ids: Iterable[int]) -> list[int]:
    """Of ``problem_ids``, the ones that are missing or retired (sorted, de-duplicated)."""
    wanted = set(problem_ids)
    if not wanted:
        return []
    result = await db.execute(select(Problem.id).where(Problem.id.in_(wanted), Problem.is_active.is_(True)))
    return sorted(wanted - set(result.scalars().all()))


# ---------------------------------------------------------------------------
# Public reads
# ---------------------------------------------------------------------------


async def list_topics(db: AsyncSession) -> list[Topic]:
    result = await db.execute(select(Topic).where(Topic.is_active.is_(True)).order_by(Topic.order, Topic.id))
    return list(result.scalars().all())


async def get_topic(db: AsyncSession, topic_id: int, *, active_only: bool = True) -> Topic | None:
    stmt = select(Topic).where(Topic.id == topic_id)
    if active_only:
        stmt = stmt.where(Topic.is_active.is_(True))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_topic_problems(db: AsyncSession, topic_id: int, *, tag: str | None = None) -> list[Problem]:
    result = await db.execute(
        select(Problem)
        .where(Problem.topic_id == topic_id, Problem.is_active.is_(True))
        .order_by(Problem.order, Problem.id)
    )
    problems = list(result.scalars().all())
    if tag is not None:
        wanted = tag.strip().lower()
        problems = [p for p in problems if wanted in p.tags]
    return problems


async def find_topic(db: AsyncSession, identifier: str, *, include_retired: bool = False) -> Topic | None:
    """Topic by numeric id or by slug."""
    stmt = select(Topic).where(_matches(Topic, identifier)).order_by(Topic.slug == identifier)
    if not include_retired:
        stmt = stmt.where(Topic.is_active.is_(True))
    result = await db.execute(stmt)
    return result.scalars().first()


async def find_problem(db: AsyncSession, identifier: str, *, include_retired: bool = False) -> Problem | None:
    """Problem by numeric id or by slug."""
    stmt = select(Problem).where(_matches(Problem, identifier)).order_by(Problem.slug == identifier)
    if not include_retired:
        stmt = stmt.where(Problem.is_active.is_(True))
    result = await db.execute(stmt)
    return result.scalars().first()


def _matches(model: type[Topic] | type[Problem], identifier: str) -> ColumnElement[bool]:
    # All-digit slugs are legal; an id match sorts ahead of a slug match.
    if identifier.isascii() and identifier.isdigit() and len(identifier) <= 18:
        return or_(model.id == int(identifier), model.slug == identifier)
    return model.slug == identifier


async def tag_counts(db: AsyncSession) -> list[tuple[str, int]]:
    """Tags across active problems with how many problems carry each, most used first."""
    result = await db.execute(select(Problem.tags).where(Problem.is_active.is_(True)))
    counts = Counter(tag for tags in result.scalars().all() for tag in tags)
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


async def problem_stats(db: AsyncSession) -> dict[str, Any]:
    """Active problem total and the split by difficulty (every level present)."""
    result = await db.execute(
        select(Problem.difficulty, func.count(Problem.id))
        .where(Problem.is_active.is_(True))
        .group_by(Problem.difficulty)
    )
    by_difficulty = dict.fromkeys(Difficulty, 0)
    for difficulty, count in result.all():
        by_difficulty[Difficulty(difficulty)] = count
    return {"total": sum(by_difficulty.values()), "by_difficulty": by_difficulty}


async def problem_counts_by_topic(db: AsyncSession) -> dict[int, int]:
    """Active problem count per topic."""
    result = await db.execute(
        select(Problem.topic_id, func.count(Problem.id))
        .where(Problem.is_active.is_(True))
        .group_by(Problem.topic_id)
    )
    return {topic_id: count for topic_id, count in result.all()}


async def completed_counts_by_topic(db: AsyncSession, user_id: int) -> dict[int, int]:
    """Number of active problems per topic the user has completed."""
    result = await db.execute(
        select(Problem.topic_id, func.count(UserProgress.id))
        .join(Problem, Problem.id == UserProgress.problem_id)
        .where(
            UserProgress.user_id == user_id,
            UserProgress.status == ProgressStatus.COMPLETED,
            Problem.is_active.is_(True),
        )
        .group_by(Problem.topic_id)
    )
    return {topic_id: count for topic_id, count in result.all()}


# ---------------------------------------------------------------------------
# Admin writes (audited)
# ---------------------------------------------------------------------------


async def _commit_or_slug_conflict(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        msg = "Slug is already in use"
        raise SlugTakenError(msg) from e


async def create_topic(db: AsyncSession, admin: User, fields: dict[str, Any]) -> Topic:
    topic = Topic(**fields)
    db.add(topic)
    await _commit_or_slug_conflict(db)
    logger.info("topic_created", topic_id=topic.id, admin_id=admin.id)
    await record_action(
        admin.id, AuditAction.CREATE_TOPIC, topic.id, EntityType.TOPIC, {"title": topic.title, "slug": topic.slug}
    )
    return topic


async def update_topic(db: AsyncSession, admin: User, topic_id: int, changes: dict[str, Any]) -> Topic:
    topic = await get_topic(db, topic_id, active_only=False)
    if topic is None:
        msg = "Topic not found"
        raise ContentNotFoundError(msg)
    before = {field: getattr(topic, field) for field in changes}
    for field, value in changes.items():
        setattr(topic, field, value)
    await _commit_or_slug_conflict(db)
    logger.info("topic_updated", topic_id=topic.id, admin_id=admin.id, fields=sorted(changes))
    await record_action(
        admin.id,
        AuditAction.UPDATE_TOPIC,
        topic.id,
        EntityType.TOPIC,
        {"title": topic.title, "before": before, "after": changes},
    )
    return topic


async def delete_topic(db: AsyncSession, admin: User, topic_id: int) -> Topic:
    """Soft-delete a topic. Refused while it still has active problems."""
    topic = await get_topic(db, topic_id, active_only=False)
    if topic is None:
        msg = "Topic not found"
        raise ContentNotFoundError(msg)
    if not topic.is_active:
        msg = "Topic is already deleted"
        raise ContentStateError(msg)

    active_problems = await db.scalar(
        select(func.count(Problem.id)).where(Problem.topic_id == topic_id, Problem.is_active.is_(True))
    )
    if active_problems:
        msg = (
            f"Cannot delete topic with {active_problems} active problem(s). "
            "Delete or move the problems first."
        )
        raise ContentStateError(msg)

    topic.is_active = False
    await db.commit()
    logger.info("topic_deleted", topic_id=topic.id, admin_id=admin.id)
    await record_action(
        admin.id, AuditAction.DELETE_TOPIC, topic.id, EntityType.TOPIC, {"title": topic.title, "slug": topic.slug}
    )
    return topic


async def get_problem(db: AsyncSession, problem_id: int) -> Problem | None:
    result = await db.execute(select(Problem).where(Problem.id == problem_id))
    return result.scalar_one_or_none()


async def create_problem(db: AsyncSession, admin: User, fields: dict[str, Any]) -> Problem:
    if await get_topic(db, fields["topic_id"]) is None:
        msg = "Topic not found"
        raise ContentNotFoundError(msg)
    problem = Problem(**fields, created_by=admin.id)
    db.add(problem)
    await _commit_or_slug_conflict(db)
    logger.info("problem_created", problem_id=problem.id, admin_id=admin.id)
    await record_action(
        admin.id,
        AuditAction.CREATE_PROBLEM,
        problem.id,
        EntityType.PROBLEM,
        {"title": problem.title, "slug": problem.slug, "difficulty": problem.difficulty},
    )
    return problem


async def update_problem(db: AsyncSession, admin: User, problem_id: int, changes: dict[str, Any]) -> Problem:
    problem = await get_problem(db, problem_id)
    if problem is None:
        msg = "Problem not found"
        raise ContentNotFoundError(msg)
    if "topic_id" in changes and await get_topic(db, changes["topic_id"]) is None:
        msg = "Topic not found"
        raise ContentNotFoundError(msg)
    before = {field: getattr(problem, field) for field in changes}
    for field, value in changes.items():
        setattr(problem, field, value)
    await _commit_or_slug_conflict(db)
    logger.info("problem_updated", problem_id=problem.id, admin_id=admin.id, fields=sorted(changes))
    await record_action(
        admin.id,
        AuditAction.UPDATE_PROBLEM,
        problem.id,
        EntityType.PROBLEM,
        {"title": problem.title, "before": before, "after": changes},
    )
    return problem


async def delete_problem(db: AsyncSession, admin: User, problem_id: int) -> Problem:
    """Soft-delete (retire) a problem. Existing progress rows are kept."""
    problem = await get_problem(db, problem_id)
    if problem is None:
        msg = "Problem not found"
        raise ContentNotFoundError(msg)
    if not problem.is_active:
        msg = "Problem is already deleted"
        raise ContentStateError(msg)

    problem.is_active = False
    await db.commit()
    logger.info("problem_deleted", problem_id=problem.id, admin_id=admin.id)
    await record_action(
        admin.id,
        AuditAction.DELETE_PROBLEM,
        problem.id,
        EntityType.PROBLEM,
        {"title": problem.title, "slug": problem.slug, "difficulty": problem.difficulty},
    )
    return problem
