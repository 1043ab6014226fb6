"""Tests for the /api/v1/auth endpoints and the HTTP side of the gate."""

from __future__ import annotations

import asyncio

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from dsasheet.auth import gate
from dsasheet.config import get_settings
from dsasheet.db.models import Problem, Role, User
from dsasheet.progress.ledger import ProgressLedger
from tests.conftest import DEFAULT_PASSWORD, auth_headers, make_account

GENERIC_401 = "Authentication required. Please log in again."


class TestRegister:
    async def test_register_returns_token_and_user(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/auth/register",
            json={"name": "Ada", "email": "Ada@Example.com", "password": "Lovelace1"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["user"]["email"] == "ada@example.com"
        assert data["user"]["role"] == "user"
        assert data["expires_in"] == 604800
        assert "password_hash" not in data["user"]
        assert data["token"]

        me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200
        assert me.json()["name"] == "Ada"

    async def test_role_in_request_is_ignored(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/auth/register",
            json={"name": "Eve", "email": "eve@example.com", "password": "Sneaky123", "role": "admin"},
        )
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "user"

    async def test_duplicate_email_conflict(self, client: AsyncClient, user: User) -> None:
        response = await client.post(
            "/api/v1/auth/register",
            json={"name": "Again", "email": user.email.upper(), "password": "Another12"},
        )
        assert response.status_code == 409

    async def test_weak_password(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/auth/register",
            json={"name": "Weak", "email": "weak@example.com", "password": "password"},
        )
        assert response.status_code == 400
        assert "uppercase" in response.json()["detail"]


class TestLogin:
    async def test_login_includes_completed_problems(
        self, client: AsyncClient, db: AsyncSession, user: User, problem: Problem
    ) -> None:
        await ProgressLedger(db).mark_completed(user.id, problem.id)
        response = await client.post(
            "/api/v1/auth/login", json={"email": user.email, "password": DEFAULT_PASSWORD}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["user"]["id"] == user.id
        assert data["completed_problem_ids"] == [problem.id]
        assert data["token"]

    async def test_bad_credentials(self, client: AsyncClient, user: User) -> None:
        response = await client.post("/api/v1/auth/login", json={"email": user.email, "password": "Wrong1234"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    async def test_inactive_account(self, client: AsyncClient, db: AsyncSession) -> None:
        await make_account(db, email="off@example.com", is_active=False)
        response = await client.post(
            "/api/v1/auth/login", json={"email": "off@example.com", "password": DEFAULT_PASSWORD}
        )
        assert response.status_code == 403


class TestGateOverHttp:
    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": "Basic abc"},
            {"Authorization": "Bearer not-a-jwt"},
        ],
    )
    async def test_generic_401(self, client: AsyncClient, headers: dict[str, str]) -> None:
        response = await client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 401
        assert response.json()["detail"] == GENERIC_401
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_deleted_or_inactive_account_gets_same_401(self, client: AsyncClient, db: AsyncSession) -> None:
        inactive = await make_account(db, email="off@example.com", is_active=False)
        response = await client.get("/api/v1/auth/me", headers=auth_headers(inactive))
        assert response.status_code == 401
        assert response.json()["detail"] == GENERIC_401

    async def test_lookup_timeout_is_retryable_503(
        self, client: AsyncClient, user: User, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def slow_lookup(_db, _account_id):
            await asyncio.sleep(1)

        monkeypatch.setattr(gate, "get_account_by_id", slow_lookup)
        monkeypatch.setenv("DSA_AUTH_LOOKUP_TIMEOUT_SECONDS", "0.01")
        get_settings.cache_clear()
        response = await client.get("/api/v1/auth/me", headers=auth_headers(user))
        assert response.status_code == 503
        assert "retry-after" in response.headers
        assert response.json()["retryable"] is True

    async def test_demoted_admin_gets_403_on_next_request(
        self, client: AsyncClient, db: AsyncSession, admin: User
    ) -> None:
        headers = auth_headers(admin)
        assert (await client.get("/api/v1/users", headers=headers)).status_code == 200

        admin.role = Role.USER
        await db.commit()

        response = await client.get("/api/v1/users", headers=headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "You do not have permission to perform this action."


class TestSelfService:
    async def test_logout_is_stateless(self, client: AsyncClient, user: User) -> None:
        headers = auth_headers(user)
        response = await client.post("/api/v1/auth/logout", headers=headers)
        assert response.status_code == 200
        # No revocation list: the same token keeps working until it expires.
        assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 200

    async def test_progress_lists_completed_ids(
        self, client: AsyncClient, db: AsyncSession, user: User, problem: Problem
    ) -> None:
        response = await client.get("/api/v1/auth/progress", headers=auth_headers(user))
        assert response.json() == {"completed_problem_ids": [], "count": 0}

        await ProgressLedger(db).mark_completed(user.id, problem.id)
        response = await client.get("/api/v1/auth/progress", headers=auth_headers(user))
        assert response.json() == {"completed_problem_ids": [problem.id], "count": 1}

    async def test_change_password(self, client: AsyncClient, user: User) -> None:
        response = await client.put(
            "/api/v1/auth/change-password",
            headers=auth_headers(user),
            json={"current_password": DEFAULT_PASSWORD, "new_password": "Changed123"},
        )
        assert response.status_code == 200

        old = await client.post("/api/v1/auth/login", json={"email": user.email, "password": DEFAULT_PASSWORD})
        new = await client.post("/api/v1/auth/login", json={"email": user.email, "password": "Changed123"})
        assert old.status_code == 401
        assert new.status_code == 200

    async def test_change_password_wrong_current(self, client: AsyncClient, user: User) -> None:
        response = await client.put(
            "/api/v1/auth/change-password",
            headers=auth_headers(user),
            json={"current_password": "NotMine123", "new_password": "Changed123"},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Current password is incorrect"
