"""Request/response schemas for account administration.

Re-exports the public account view from auth schemas.
"""

from __future__ import annotations

from pydantic import BaseModel

from dsasheet.auth.schemas import UserResponse

__all__ = [
    "UserListResponse",
    "UserResponse",
    "UserStatsResponse",
]


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int
    limit: int
    offset: int


class UserStatsResponse(BaseModel):
    total_users: int
    admins: int
    standard_users: int
    active_users: int
    inactive_users: int
    recent_users: list[UserResponse]
