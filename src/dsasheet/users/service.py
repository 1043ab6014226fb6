"""
Account administration for admins: listing, stats, and role/active transitions.

Each transition is a single conditional write that commits before exactly
one audit entry naming the acting admin and the target account is appended.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, or_, select, update

from dsasheet.audit.service import record_action
from dsasheet.auth.service import get_account_by_id
from dsasheet.db.models import AuditAction, EntityType, Role, User

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class AccountNotFoundError(LookupError):
    """No account with that id."""


class AccountStateError(ValueError):
    """Transition is not allowed from the account's current state."""


async def list_accounts(
    db: AsyncSession,
    *,
    role: Role | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[User], int]:
    """Page of accounts, newest first, plus the total matching the filters."""
    filters = []
    if role is not None:
        filters.append(User.role == role)
    if is_active is not None:
        filters.append(User.is_active.is_(is_active))
    if search:
        pattern = f"%{search.strip().lower()}%"
        filters.append(or_(func.lower(User.name).like(pattern), User.email.like(pattern)))

    total = await db.scalar(select(func.count(User.id)).where(*filters)) or 0
    result = await db.execute(
        select(User).where(*filters).order_by(User.created_at.desc(), User.id.desc()).limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total


async def account_stats(db: AsyncSession) -> dict[str, Any]:
    by_role = dict((await db.execute(select(User.role, func.count(User.id)).group_by(User.role))).all())
    active = await db.scalar(select(func.count(User.id)).where(User.is_active.is_(True))) or 0
    total = sum(by_role.values())
    recent = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()).limit(5))
    return {
        "total_users": total,
        "admins": by_role.get(Role.ADMIN, 0),
        "standard_users": by_role.get(Role.USER, 0),
        "active_users": active,
        "inactive_users": total - active,
        "recent_users": list(recent.scalars().all()),
    }


async def _load_target(db: AsyncSession, user_id: int) -> User:
    target = await get_account_by_id(db, user_id)
    if target is None:
        msg = "User not found"
        raise AccountNotFoundError(msg)
    return target


async def _apply_if(db: AsyncSession, user_id: int, expected: ColumnElement[bool], **values: Any) -> User | None:
    """
    Write ``values`` only while the account still matches ``expected``.

    One conditional UPDATE: when two admins race on the same transition
    exactly one of them gets the row back, the other gets None.
    """
    result = await db.execute(
        update(User)
        .where(User.id == user_id, expected)
        .values(**values)
        .returning(User)
        .execution_options(populate_existing=True)
    )
    target = result.scalar_one_or_none()
    await db.commit()
    return target


def _describe(target: User) -> dict[str, Any]:
    return {"name": target.name, "email": target.email}


async def promote(db: AsyncSession, admin: User, user_id: int) -> User:
    await _load_target(db, user_id)
    target = await _apply_if(db, user_id, User.role == Role.USER, role=Role.ADMIN)
    if target is None:
        msg = "User is already an admin"
        raise AccountStateError(msg)

    logger.info("user_promoted", user_id=target.id, admin_id=admin.id)
    await record_action(
        admin.id,
        AuditAction.PROMOTE_USER,
        target.id,
        EntityType.USER,
        {**_describe(target), "previous_role": Role.USER, "new_role": Role.ADMIN},
    )
    return target


async def demote(db: AsyncSession, admin: User, user_id: int) -> User:
    await _load_target(db, user_id)
    if user_id == admin.id:
        msg = "You cannot demote yourself"
        raise AccountStateError(msg)
    target = await _apply_if(db, user_id, User.role == Role.ADMIN, role=Role.USER)
    if target is None:
        msg = "User is not an admin"
        raise AccountStateError(msg)

    logger.info("user_demoted", user_id=target.id, admin_id=admin.id)
    await record_action(
        admin.id,
        AuditAction.DEMOTE_USER,
        target.id,
        EntityType.USER,
        {**_describe(target), "previous_role": Role.ADMIN, "new_role": Role.USER},
    )
    return target


async def activate(db: AsyncSession, admin: User, user_id: int) -> User:
    await _load_target(db, user_id)
    target = await _apply_if(db, user_id, User.is_active.is_(False), is_active=True)
    if target is None:
        msg = "User is already active"
        raise AccountStateError(msg)

    logger.info("user_activated", user_id=target.id, admin_id=admin.id)
    await record_action(
        admin.id,
        AuditAction.ACTIVATE_USER,
        target.id,
        EntityType.USER,
        {**_describe(target), "previous_is_active": False, "new_is_active": True},
    )
    return target


async def deactivate(db: AsyncSession, admin: User, user_id: int) -> User:
    """Deactivated accounts fail the gate on their next request; their data is kept."""
    await _load_target(db, user_id)
    if user_id == admin.id:
        msg = "You cannot deactivate yourself"
        raise AccountStateError(msg)
    target = await _apply_if(db, user_id, User.is_active.is_(True), is_active=False)
    if target is None:
        msg = "User is already inactive"
        raise AccountStateError(msg)

    logger.info("user_deactivated", user_id=target.id, admin_id=admin.id)
    await record_action(
        admin.id,
        AuditAction.DEACTIVATE_USER,
        target.id,
        EntityType.USER,
        {**_describe(target), "previous_is_active": True, "new_is_active": False},
    )
    return target
