"""
Credential store.

Account lookup, registration, login, password change and the start-up
bootstrap of the first admin account. Password hashes are created and
compared only inside this module and auth.password.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from dsasheet.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from dsasheet.db.models import Role, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from dsasheet.config import Settings

logger = structlog.get_logger()


class EmailAlreadyRegisteredError(ValueError):
    """Registration attempted with an email that already has an account."""


class InvalidCredentialsError(ValueError):
    """Unknown email or wrong password. One message for both."""


class AccountInactiveError(PermissionError):
    """Credentials are right but the account is deactivated."""


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Account queries
# ---------------------------------------------------------------------------


async def get_account_by_id(db: AsyncSession, account_id: int) -> User | None:
    """Fetch an account by ID, always from the database (never from the identity map)."""
    result = await db.execute(
        select(User).where(User.id == account_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_account_by_email(db: AsyncSession, email: str) -> User | None:
    """Fetch an account by email (case-insensitive)."""
    result = await db.execute(select(User).where(func.lower(User.email) == normalize_email(email)))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Registration / login
# ---------------------------------------------------------------------------


async def register_account(db: AsyncSession, name: str, email: str, password: str) -> User:
    """
    Create a standard account. Role is always ``user`` here, whatever the caller asks for.

    Raises:
        PasswordStrengthError: Password does not meet the strength rules.
        EmailAlreadyRegisteredError: Email already taken (checked up front and
            again by the unique index if two registrations race).
    """
    validate_password_strength(password)

    email = normalize_email(email)
    if await get_account_by_email(db, email) is not None:
        msg = "User with this email already exists"
        raise EmailAlreadyRegisteredError(msg)

    user = User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=Role.USER,
        is_active=True,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        msg = "User with this email already exists"
        raise EmailAlreadyRegisteredError(msg) from e

    logger.info("account_registered", user_id=user.id)
    return user


async def authenticate_account(db: AsyncSession, email: str, password: str) -> User:
    """
    Check email + password and stamp the login time.

    Raises:
        InvalidCredentialsError: Unknown email or wrong password.
        AccountInactiveError: Account has been deactivated.
    """
    user = await get_account_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        msg = "Invalid email or password"
        raise InvalidCredentialsError(msg)

    if not user.is_active:
        msg = "Your account has been deactivated. Please contact support."
        raise AccountInactiveError(msg)

    if check_needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)

    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("account_logged_in", user_id=user.id)
    return user


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> None:
    """
    Replace an account's password.

    Raises:
        InvalidCredentialsError: ``current_password`` is wrong.
        PasswordStrengthError: New password is weak or equal to the current one.
    """
    if not verify_password(current_password, user.password_hash):
        msg = "Current password is incorrect"
        raise InvalidCredentialsError(msg)
    if current_password == new_password:
        msg = "New password must be different from the current password"
        raise PasswordStrengthError(msg)
    validate_password_strength(new_password)

    user.password_hash = hash_password(new_password)
    await db.commit()
    logger.info("password_changed", user_id=user.id)


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


async def ensure_bootstrap_admin(db: AsyncSession, settings: Settings) -> User | None:
    """
    Create the first admin from DSA_ADMIN_EMAIL / DSA_ADMIN_PASSWORD.

    Safe to run on every start: it does nothing once any admin exists.
    Returns the created account, or None when nothing was created.
    Never raises; start-up must not fail because of this step.
    """
    try:
        admin_count = await db.scalar(select(func.count(User.id)).where(User.role == Role.ADMIN))
        if admin_count:
            logger.debug("bootstrap_admin_skipped", reason="admin_exists", admins=admin_count)
            return None

        if not settings.admin_email or not settings.admin_password:
            logger.warning(
                "bootstrap_admin_skipped",
                reason="credentials_not_configured",
                hint="Set DSA_ADMIN_EMAIL and DSA_ADMIN_PASSWORD to create an admin account",
            )
            return None

        email = normalize_email(settings.admin_email)
        if await get_account_by_email(db, email) is not None:
            logger.warning(
                "bootstrap_admin_skipped",
                reason="email_taken",
                email=email,
                hint="Promote the existing account instead",
            )
            return None

        admin = User(
            name=settings.admin_name,
            email=email,
            password_hash=hash_password(settings.admin_password),
            role=Role.ADMIN,
            is_active=True,
        )
        db.add(admin)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.error("bootstrap_admin_failed", exc_info=True)
        return None

    logger.info("bootstrap_admin_created", user_id=admin.id, email=email)
    return admin
