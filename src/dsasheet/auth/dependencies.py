"""FastAPI authentication dependencies built on the authorization gate."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dsasheet.auth.gate import AuthOutcome, OutcomeKind, authorize, extract_bearer
from dsasheet.config import get_settings
from dsasheet.database import get_session
from dsasheet.db.models import Role, User

logger = structlog.get_logger()

UNAUTHENTICATED_DETAIL = "Authentication required. Please log in again."
FORBIDDEN_DETAIL = "You do not have permission to perform this action."


async def _evaluate(request: Request, db: AsyncSession, required_roles: frozenset[str] | None) -> AuthOutcome:
    token = extract_bearer(request.headers.get("Authorization"))
    return await authorize(
        db,
        token,
        required_roles,
        lookup_timeout=get_settings().auth_lookup_timeout_seconds,
    )


def _admitted(outcome: AuthOutcome, request: Request) -> User:
    """The account of an authorized outcome; any other outcome becomes the matching HTTP error."""
    if outcome.kind is OutcomeKind.FORBIDDEN:
        raise HTTPException(status_code=403, detail=FORBIDDEN_DETAIL)
    if outcome.kind is OutcomeKind.AUTHORIZED and outcome.account is not None:
        return outcome.account
    # The specific reason stays in the logs; callers all get the same message.
    logger.info("authentication_rejected", reason=outcome.failure, path=request.url.path)
    raise HTTPException(
        status_code=401,
        detail=UNAUTHENTICATED_DETAIL,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> User:
    """Any authenticated, active account. 401 otherwise."""
    outcome = await _evaluate(request, db, None)
    return _admitted(outcome, request)


def require_roles(*roles: str) -> Callable[..., Awaitable[User]]:
    """
    Build a dependency admitting only accounts whose *current* role is in ``roles``.

    401 when the caller is not authenticated, 403 when authenticated but not allowed.
    """
    allowed = frozenset(str(r) for r in roles)

    async def dependency(
        request: Request,
        db: AsyncSession = Depends(get_session),
    ) -> User:
        outcome = await _evaluate(request, db, allowed)
        return _admitted(outcome, request)

    return dependency


require_admin = require_roles(Role.ADMIN)


async def get_current_user_optional(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> User | None:
    """Return the caller's account when they present a good token, None otherwise. Never rejects."""
    outcome = await _evaluate(request, db, None)
    return outcome.account if outcome.authorized else None
