"""
Signed, time-bounded identity tokens (JWT).

The payload carries exactly five claims: ``sub`` (account id), ``email``,
``role``, ``iat`` and ``exp``. Tokens are never renewed server-side and
there is no revocation list; a token stops working when it expires or when
the signing key changes. The role claim is informational only: the
authorization gate always re-reads the role from the database.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import jwt

from dsasheet.config import get_settings
from dsasheet.db.models import Role

DEFAULT_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60

_DURATION_RE = re.compile(r"(\d+)([dhms])")
_UNIT_SECONDS = {"d": 24 * 60 * 60, "h": 60 * 60, "m": 60, "s": 1}
_CLAIMS = frozenset({"sub", "email", "role", "iat", "exp"})

_signing_key: str | None = None
_verifying_key: str | None = None


class TokenError(Exception):
    """Token could not be verified for a reason other than expiry or bad structure."""


class TokenExpiredError(TokenError):
    """Token is structurally valid but past its expiry."""


class TokenMalformedError(TokenError):
    """Signature or structure of the token is invalid."""


@dataclass(frozen=True)
class TokenPayload:
    account_id: int
    email: str
    role: str
    issued_at: datetime
    expires_at: datetime


def parse_duration(value: str | None) -> int:
    """
    Convert a compact duration ("7d", "24h", "30m", "45s") to seconds.

    Anything that does not match ``<integer><d|h|m|s>`` falls back to seven
    days instead of failing token issuance.
    """
    match = _DURATION_RE.fullmatch(value or "")
    if match is None:
        return DEFAULT_TOKEN_TTL_SECONDS
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]


def expires_in_seconds() -> int:
    """Lifetime of newly issued tokens, from DSA_JWT_EXPIRES_IN."""
    return parse_duration(get_settings().jwt_expires_in)


def _load_keys() -> tuple[str, str]:
    """Load signing material (cached after first call).

    HMAC algorithms use DSA_JWT_SECRET; asymmetric ones read PEM files.
    """
    global _signing_key, _verifying_key  # noqa: PLW0603
    if _signing_key is None or _verifying_key is None:
        settings = get_settings()
        if settings.jwt_algorithm.upper().startswith("HS"):
            if not settings.jwt_secret:
                msg = "DSA_JWT_SECRET must be set for HMAC token signing"
                raise RuntimeError(msg)
            _signing_key = _verifying_key = settings.jwt_secret
        else:
            _signing_key = Path(settings.jwt_private_key_path).read_text()
            _verifying_key = Path(settings.jwt_public_key_path).read_text()
    return _signing_key, _verifying_key


def reset_keys() -> None:
    """Drop cached signing material (key rotation, tests)."""
    global _signing_key, _verifying_key  # noqa: PLW0603
    _signing_key = None
    _verifying_key = None


def create_access_token(
    account_id: int,
    email: str,
    role: str,
    *,
    now: datetime | None = None,
) -> str:
    """
    Issue a signed token for an account.

    Args:
        account_id: The account's database ID.
        email: The account's email address.
        role: The account's role at issuance time.
        now: Issuance instant; defaults to the current UTC time.

    Returns:
        Encoded JWT string.
    """
    signing_key, _ = _load_keys()
    issued_at = int((now or datetime.now(timezone.utc)).timestamp())
    payload: dict[str, Any] = {
        "sub": str(account_id),
        "email": email,
        "role": str(role),
        "iat": issued_at,
        "exp": issued_at + expires_in_seconds(),
    }
    return jwt.encode(payload, signing_key, algorithm=get_settings().jwt_algorithm)


def verify_token(token: str, *, now: datetime | None = None) -> TokenPayload:
    """
    Verify signature, structure and expiry of a token.

    Does not look the account up; that is the gate's job.

    Raises:
        TokenExpiredError: ``exp`` is at or before ``now``.
        TokenMalformedError: Bad signature, undecodable token or unexpected claims.
        TokenError: Any other verification failure.
    """
    _, verifying_key = _load_keys()
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            verifying_key,
            algorithms=[get_settings().jwt_algorithm],
            options={
                "require": sorted(_CLAIMS),
                "verify_exp": False,
                "verify_iat": False,
            },
        )
    except (jwt.DecodeError, jwt.MissingRequiredClaimError, jwt.InvalidAlgorithmError) as e:
        raise TokenMalformedError("Invalid token") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Token verification failed") from e

    payload = _payload_from_claims(claims)

    current = (now or datetime.now(timezone.utc)).timestamp()
    if payload.expires_at.timestamp() <= current:
        msg = "Token has expired"
        raise TokenExpiredError(msg)
    return payload


def _payload_from_claims(claims: dict[str, Any]) -> TokenPayload:
    if set(claims) != _CLAIMS:
        raise TokenMalformedError("Invalid token")
    sub, email, role, iat, exp = (claims[k] for k in ("sub", "email", "role", "iat", "exp"))
    if (
        not isinstance(sub, str)
        or not sub.isdigit()
        or not isinstance(email, str)
        or role not in {r.value for r in Role}
        or type(iat) is not int
        or type(exp) is not int
    ):
        raise TokenMalformedError("Invalid token")
    return TokenPayload(
        account_id=int(sub),
        email=email,
        role=role,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )
