"""Account administration router: /api/v1/users/* endpoints, admin only."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dsasheet.auth.dependencies import require_admin
from dsasheet.auth.service import get_account_by_id
from dsasheet.database import get_session
from dsasheet.db.models import Role, User
from dsasheet.users import service
from dsasheet.users.schemas import UserListResponse, UserResponse, UserStatsResponse
from dsasheet.users.service import AccountNotFoundError, AccountStateError

router = APIRouter(prefix="/api/v1/users", tags=["Users"])

Transition = Callable[[AsyncSession, User, int], Awaitable[User]]


@router.get("", response_model=UserListResponse)
async def list_users(
    role: Role | None = None,
    is_active: bool | None = None,
    search: str | None = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserListResponse:
    users, total = await service.list_accounts(
        db, role=role, is_active=is_active, search=search, limit=limit, offset=offset
    )
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=UserStatsResponse)
async def user_stats(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserStatsResponse:
    """Totals by role and active flag, plus the five newest accounts."""
    stats = await service.account_stats(db)
    recent = [UserResponse.model_validate(u) for u in stats.pop("recent_users")]
    return UserStatsResponse(**stats, recent_users=recent)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserResponse:
    user = await get_account_by_id(db, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse.model_validate(user)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def _transition(action: Transition, db: AsyncSession, admin: User, user_id: int) -> UserResponse:
    try:
        user = await action(db, admin, user_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except AccountStateError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return UserResponse.model_validate(user)


@router.put("/{user_id}/promote", response_model=UserResponse)
async def promote_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserResponse:
    return await _transition(service.promote, db, admin, user_id)


@router.put("/{user_id}/demote", response_model=UserResponse)
async def demote_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserResponse:
    """Takes effect on the target's next request, whatever their token says."""
    return await _transition(service.demote, db, admin, user_id)


@router.put("/{user_id}/activate", response_model=UserResponse)
async def activate_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserResponse:
    return await _transition(service.activate, db, admin, user_id)


@router.put("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserResponse:
    return await _transition(service.deactivate, db, admin, user_id)
