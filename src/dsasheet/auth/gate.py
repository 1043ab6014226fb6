"""
Authorization gate.

One function, ``authorize``, walks every protected request through

    Unauthenticated -> TokenVerified -> AccountLoaded -> Authorized

and returns a tagged ``AuthOutcome`` instead of raising, so the HTTP layer
(auth.dependencies) is the only place that turns outcomes into responses.

The account is re-read from the database on every call and the role
check uses that fresh row, never the token's ``role`` claim: a demotion or
deactivation takes effect on the account's very next request.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Collection
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from dsasheet.auth.service import get_account_by_id
from dsasheet.auth.tokens import TokenExpiredError, TokenMalformedError, TokenError, verify_token

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from dsasheet.db.models import User

logger = structlog.get_logger()

_BEARER_PREFIX = "bearer "


class OutcomeKind(enum.StrEnum):
    AUTHORIZED = "authorized"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


class AuthFailure(enum.StrEnum):
    CREDENTIAL_ABSENT = "credential_absent"
    CREDENTIAL_MALFORMED = "credential_malformed"
    CREDENTIAL_EXPIRED = "credential_expired"
    CREDENTIAL_INVALID = "credential_invalid"
    ACCOUNT_GONE = "account_gone"
    ACCOUNT_INACTIVE = "account_inactive"
    ROLE_MISMATCH = "role_mismatch"


@dataclass(frozen=True)
class AuthOutcome:
    kind: OutcomeKind
    account: User | None = None
    failure: AuthFailure | None = None

    @property
    def authorized(self) -> bool:
        return self.kind is OutcomeKind.AUTHORIZED

    @classmethod
    def unauthenticated(cls, failure: AuthFailure) -> AuthOutcome:
        return cls(OutcomeKind.UNAUTHENTICATED, failure=failure)


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` header, else None."""
    if not authorization or not authorization.lower().startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX):].strip()
    return token or None


async def authorize(
    db: AsyncSession,
    token: str | None,
    required_roles: Collection[str] | None = None,
    *,
    lookup_timeout: float,
) -> AuthOutcome:
    """
    Decide whether the bearer of ``token`` may proceed.

    Args:
        db: Session used for the account re-fetch.
        token: Raw bearer token, or None when the request carried none.
        required_roles: Roles allowed through; None means any active account.
        lookup_timeout: Seconds to wait for the account re-fetch.

    Raises:
        TimeoutError: The account lookup did not finish in time. This is a
            store problem, not an authentication failure, and is left for the
            caller to report as retryable.
    """
    if token is None:
        return AuthOutcome.unauthenticated(AuthFailure.CREDENTIAL_ABSENT)

    try:
        payload = verify_token(token)
    except TokenExpiredError:
        return AuthOutcome.unauthenticated(AuthFailure.CREDENTIAL_EXPIRED)
    except TokenMalformedError:
        return AuthOutcome.unauthenticated(AuthFailure.CREDENTIAL_MALFORMED)
    except TokenError:
        return AuthOutcome.unauthenticated(AuthFailure.CREDENTIAL_INVALID)

    account = await asyncio.wait_for(get_account_by_id(db, payload.account_id), timeout=lookup_timeout)
    if account is None:
        return AuthOutcome.unauthenticated(AuthFailure.ACCOUNT_GONE)
    if not account.is_active:
        return AuthOutcome.unauthenticated(AuthFailure.ACCOUNT_INACTIVE)

    if required_roles is not None and account.role not in required_roles:
        logger.info(
            "authorization_denied",
            user_id=account.id,
            role=account.role,
            token_role=payload.role,
            required=sorted(required_roles),
        )
        return AuthOutcome(OutcomeKind.FORBIDDEN, account=account, failure=AuthFailure.ROLE_MISMATCH)

    return AuthOutcome(OutcomeKind.AUTHORIZED, account=account)
