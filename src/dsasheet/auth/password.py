"""
Password hashing and strength rules.

Hashes are argon2id strings. They are produced and checked only here and in
auth.service; nothing outside the credential store ever sees them.
"""

from __future__ import annotations

import argon2

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,  # 64 MB
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,
)


class PasswordStrengthError(ValueError):
    """Raised when a password does not meet strength requirements."""


def hash_password(password: str) -> str:
    """Hash a password using argon2id. Returns the full encoded hash."""
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """
    Check a password against its stored hash.

    Never raises on mismatch or on a corrupt/foreign hash; both are a plain False.
    """
    try:
        return _hasher.verify(password_hash, password)
    except (argon2.exceptions.VerificationError, argon2.exceptions.InvalidHashError):
        return False


def check_needs_rehash(password_hash: str) -> bool:
    """True when the hash was produced with older argon2 parameters."""
    return _hasher.check_needs_rehash(password_hash)


def validate_password_strength(password: str) -> None:
    """
    Raise PasswordStrengthError unless the password has 8-128 characters
    with at least one uppercase letter, one lowercase letter and one digit.
    """
    if not password or not password.strip():
        msg = "Password cannot be empty"
        raise PasswordStrengthError(msg)
    if len(password) < PASSWORD_MIN_LENGTH:
        msg = f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
        raise PasswordStrengthError(msg)
    if len(password) > PASSWORD_MAX_LENGTH:
        msg = f"Password cannot exceed {PASSWORD_MAX_LENGTH} characters"
        raise PasswordStrengthError(msg)
    missing = [
        label
        for label, present in (
            ("one uppercase letter", any(c.isupper() for c in password)),
            ("one lowercase letter", any(c.islower() for c in password)),
            ("one digit", any(c.isdigit() for c in password)),
        )
        if not present
    ]
    if missing:
        msg = "Password must contain at least " + ", ".join(missing)
        raise PasswordStrengthError(msg)
