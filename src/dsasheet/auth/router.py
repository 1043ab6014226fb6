"""Authentication router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from dsasheet.auth.dependencies import get_current_user
from dsasheet.auth.password import PasswordStrengthError
from dsasheet.auth.schemas import (
    AuthResponse,
    ChangePasswordRequest,
    CompletedProblemsResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    UserResponse,
)
from dsasheet.auth.service import (
    AccountInactiveError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    authenticate_account,
    change_password,
    register_account,
)
from dsasheet.auth.tokens import create_access_token, expires_in_seconds
from dsasheet.database import get_session
from dsasheet.db.models import User
from dsasheet.progress.ledger import ProgressLedger

router = APIRouter(prefix="/api/v1/auth", tags=["Auth"])


def _issue_token(user: User) -> tuple[str, int]:
    return create_access_token(user.id, user.email, user.role), expires_in_seconds()


# ---------------------------------------------------------------------------
# Register / login
# ---------------------------------------------------------------------------


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_session),
) -> AuthResponse:
    """Create a standard account and log it in."""
    try:
        user = await register_account(db, body.name, body.email, body.password)
    except PasswordStrengthError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except EmailAlreadyRegisteredError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    token, expires_in = _issue_token(user)
    return AuthResponse(user=UserResponse.model_validate(user), token=token, expires_in=expires_in)


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_session),
) -> LoginResponse:
    """Login with email + password. Includes the completed problem ids so clients can hydrate."""
    try:
        user = await authenticate_account(db, body.email, body.password)
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except AccountInactiveError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e

    token, expires_in = _issue_token(user)
    completed = await ProgressLedger(db).completed_problem_ids(user.id)
    return LoginResponse(
        user=UserResponse.model_validate(user),
        token=token,
        expires_in=expires_in,
        completed_problem_ids=completed,
    )


# ---------------------------------------------------------------------------
# Current account
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(user)


@router.post("/logout", response_model=MessageResponse)
async def logout(_user: User = Depends(get_current_user)) -> MessageResponse:
    """Tokens are stateless; the client discards its copy."""
    return MessageResponse(message="Logged out successfully")


@router.get("/progress", response_model=CompletedProblemsResponse)
async def my_completed_problems(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> CompletedProblemsResponse:
    completed = await ProgressLedger(db).completed_problem_ids(user.id)
    return CompletedProblemsResponse(completed_problem_ids=completed, count=len(completed))


@router.put("/change-password", response_model=MessageResponse)
async def update_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    try:
        await change_password(db, user, body.current_password, body.new_password)
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except PasswordStrengthError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return MessageResponse(message="Password changed successfully")
