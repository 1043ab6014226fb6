"""
Progress ledger: one completion record per (user, problem).

Every write goes through ``upsert_status``, a single
``INSERT ... ON CONFLICT (user_id, problem_id) DO UPDATE ... RETURNING``
statement. The unique constraint on the table, not application locking, is
what keeps the ledger at one row per pair when requests race: two
concurrent mark-complete calls both succeed and converge on the same row.

All methods take the caller's own ``user_id`` (from the authorized account)
and never accept another account's id from an unprivileged caller.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from dsasheet.catalog.service import (
    completed_counts_by_topic,
    find_unavailable_problem_ids,
    get_active_problem,
    problem_counts_by_topic,
)
from dsasheet.db.base import utcnow
from dsasheet.db.models import Problem, ProgressStatus, Topic, UserProgress

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class ProblemNotFoundError(LookupError):
    """Problem is missing or retired."""


class BatchPreconditionError(ValueError):
    """A batch referenced problems that are missing or retired. Nothing was applied."""

    def __init__(self, invalid_ids: Sequence[int]) -> None:
        self.invalid_ids = list(invalid_ids)
        super().__init__("One or more problems not found")


class BatchTooLargeError(ValueError):
    """Batch is empty or exceeds the configured maximum size."""


@dataclass(frozen=True)
class ProgressUpdate:
    problem_id: int
    status: ProgressStatus


@dataclass
class BatchResult:
    updated: int
    records: list[UserProgress] = field(default_factory=list)


class ProgressLedger:
    """Completion tracking for one database session."""

    def __init__(self, db: AsyncSession, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self.clock = clock

    # --- Core primitive ---

    async def upsert_status(self, user_id: int, problem_id: int, status: ProgressStatus) -> UserProgress:
        """
        Insert the (user, problem) record if absent, otherwise update it, atomically.

        Both ``status`` and ``completed_at`` are always written: completed gets
        the current time, not-started gets NULL. Commits before returning.
        """
        now = self.clock()
        completed_at = now if status == ProgressStatus.COMPLETED else None

        insert = self._insert_for_dialect()
        stmt = insert(UserProgress).values(
            id=str(uuid.uuid4()),
            user_id=user_id,
            problem_id=problem_id,
            status=status,
            completed_at=completed_at,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserProgress.user_id, UserProgress.problem_id],
            set_={
                "status": stmt.excluded.status,
                "completed_at": stmt.excluded.completed_at,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(UserProgress)

        result = await self.db.execute(stmt, execution_options={"populate_existing": True})
        record = result.scalar_one()
        await self.db.commit()
        return record

    def _insert_for_dialect(self) -> Callable[..., Any]:
        dialect = self.db.get_bind().dialect.name
        try:
            return _INSERTS[dialect]
        except KeyError:
            msg = f"Progress upserts are not supported on the {dialect!r} dialect"
            raise RuntimeError(msg) from None

    # --- Single-problem mutations ---

    async def mark_completed(self, user_id: int, problem_id: int) -> UserProgress:
        """
        Mark a problem completed, creating the record on first touch.

        Idempotent in state: repeating the call leaves status=completed and the
        same record. ``completed_at`` is refreshed on every call ("when did I
        last confirm completion").

        Raises:
            ProblemNotFoundError: Problem is missing or retired.
        """
        await self._require_active_problem(problem_id)
        record = await self.upsert_status(user_id, problem_id, ProgressStatus.COMPLETED)
        logger.info("progress_marked_completed", user_id=user_id, problem_id=problem_id, progress_id=record.id)
        return record

    async def update_status(self, user_id: int, problem_id: int, status: ProgressStatus) -> UserProgress:
        """
        Set a problem's status explicitly. Not-started always clears ``completed_at``.

        Raises:
            ProblemNotFoundError: Problem is missing or retired.
        """
        await self._require_active_problem(problem_id)
        record = await self.upsert_status(user_id, problem_id, status)
        logger.debug("progress_updated", user_id=user_id, problem_id=problem_id, status=str(status))
        return record

    async def reset(self, user_id: int, problem_id: int) -> UserProgress | None:
        """
        Move an existing record back to not-started.

        Returns None when there is nothing to reset; unlike the upserts this
        never creates a record.

        Raises:
            ProblemNotFoundError: Problem is missing or retired.
        """
        await self._require_active_problem(problem_id)
        now = self.clock()
        result = await self.db.execute(
            update(UserProgress)
            .where(UserProgress.user_id == user_id, UserProgress.problem_id == problem_id)
            .values(status=ProgressStatus.NOT_STARTED, completed_at=None, updated_at=now)
            .returning(UserProgress)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        await self.db.commit()
        if record is None:
            logger.debug("progress_reset_noop", user_id=user_id, problem_id=problem_id)
        else:
            logger.debug("progress_reset", user_id=user_id, problem_id=problem_id, progress_id=record.id)
        return record

    # --- Batch ---

    async def batch_update(
        self,
        user_id: int,
        updates: Sequence[ProgressUpdate],
        max_batch_size: int,
    ) -> BatchResult:
        """
        Apply several status changes.

        Every referenced problem is checked for existence up front; one bad id
        rejects the whole batch before anything is written. After that the
        upserts run one by one, each committed on its own, so a failure part
        way through leaves the earlier ones applied. Retrying the batch is
        safe. When a problem appears twice, the later entry wins.

        Raises:
            BatchTooLargeError: Empty batch or more than ``max_batch_size`` entries.
            BatchPreconditionError: Some problems are missing or retired.
        """
        if not updates:
            msg = "Batch must contain at least one update"
            raise BatchTooLargeError(msg)
        if len(updates) > max_batch_size:
            msg = f"Batch cannot contain more than {max_batch_size} updates"
            raise BatchTooLargeError(msg)

        invalid = await find_unavailable_problem_ids(self.db, (u.problem_id for u in updates))
        if invalid:
            logger.info("progress_batch_rejected", user_id=user_id, invalid_problem_ids=invalid)
            raise BatchPreconditionError(invalid)

        records = [await self.upsert_status(user_id, u.problem_id, u.status) for u in updates]
        logger.info("progress_batch_updated", user_id=user_id, count=len(records))
        return BatchResult(updated=len(records), records=records)

    # --- Reads ---

    async def get_record(self, user_id: int, problem_id: int) -> UserProgress | None:
        result = await self.db.execute(
            select(UserProgress).where(UserProgress.user_id == user_id, UserProgress.problem_id == problem_id)
        )
        return result.scalar_one_or_none()

    async def list_progress(
        self,
        user_id: int,
        *,
        status: ProgressStatus | None = None,
        topic_id: int | None = None,
    ) -> list[tuple[UserProgress, Problem]]:
        """The user's records on active problems, most recently updated first."""
        stmt = (
            select(UserProgress, Problem)
            .join(Problem, Problem.id == UserProgress.problem_id)
            .where(UserProgress.user_id == user_id, Problem.is_active.is_(True))
            .order_by(UserProgress.updated_at.desc(), UserProgress.id)
        )
        if status is not None:
            stmt = stmt.where(UserProgress.status == status)
        if topic_id is not None:
            stmt = stmt.where(Problem.topic_id == topic_id)
        result = await self.db.execute(stmt)
        return [(progress, problem) for progress, problem in result.all()]

    async def completed_problem_ids(self, user_id: int) -> list[int]:
        result = await self.db.execute(
            select(UserProgress.problem_id)
            .where(UserProgress.user_id == user_id, UserProgress.status == ProgressStatus.COMPLETED)
            .order_by(UserProgress.problem_id)
        )
        return list(result.scalars().all())

    async def summary(self, user_id: int) -> dict[str, Any]:
        """Per-topic and overall completion over active topics and active problems."""
        topics_result = await self.db.execute(
            select(Topic).where(Topic.is_active.is_(True)).order_by(Topic.order, Topic.id)
        )
        topics = list(topics_result.scalars().all())
        totals = await problem_counts_by_topic(self.db)
        completed = await completed_counts_by_topic(self.db, user_id)

        by_topic = []
        for topic in topics:
            total = totals.get(topic.id, 0)
            done = completed.get(topic.id, 0)
            by_topic.append(
                {
                    "topic_id": topic.id,
                    "title": topic.title,
                    "slug": topic.slug,
                    "total": total,
                    "completed": done,
                    "remaining": total - done,
                    "completion_rate": _percent(done, total),
                }
            )

        total_problems = sum(t["total"] for t in by_topic)
        total_completed = sum(t["completed"] for t in by_topic)
        return {
            "overall": {
                "total_topics": len(topics),
                "total_problems": total_problems,
                "total_completed": total_completed,
                "overall_completion_rate": _percent(total_completed, total_problems),
            },
            "by_topic": by_topic,
        }

    async def _require_active_problem(self, problem_id: int) -> None:
        if await get_active_problem(self.db, problem_id) is None:
            msg = "Problem not found"
            raise ProblemNotFoundError(msg)


def _percent(part: int, whole: int) -> int:
    return round(part * 100 / whole) if whole else 0
