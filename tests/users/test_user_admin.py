"""Tests for account administration: role and active-flag transitions and their audit trail."""

from __future__ import annotations

import asyncio

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dsasheet.audit import service as audit_service
from dsasheet.database import get_session_factory
from dsasheet.db.models import AuditEntry, Role, User
from dsasheet.users import service as users_service
from dsasheet.users.service import AccountStateError
from tests.conftest import audit_count, auth_headers, broken_session_factory, make_account

BASE = "/api/v1/users"


async def entries_for(db: AsyncSession, user_id: int) -> list[AuditEntry]:
    result = await db.execute(
        select(AuditEntry).where(AuditEntry.entity_type == "user", AuditEntry.entity_id == str(user_id))
    )
    return list(result.scalars().all())


class TestAccess:
    async def test_standard_account_forbidden(self, client: AsyncClient, user: User) -> None:
        response = await client.get(BASE, headers=auth_headers(user))
        assert response.status_code == 403

    async def test_forged_admin_claim_forbidden(self, client: AsyncClient, user: User) -> None:
        response = await client.get(BASE, headers=auth_headers(user, role="admin"))
        assert response.status_code == 403


class TestPromote:
    async def test_promote_writes_exactly_one_entry(
        self, client: AsyncClient, db: AsyncSession, admin: User, user: User
    ) -> None:
        response = await client.put(f"{BASE}/{user.id}/promote", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["role"] == "admin"

        entries = await entries_for(db, user.id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.actor_id == admin.id
        assert entry.action == "promote_user"
        assert entry.details["previous_role"] == "user"
        assert entry.details["new_role"] == "admin"
        assert entry.details["email"] == user.email

    async def test_promoted_account_can_use_admin_routes_with_old_token(
        self, client: AsyncClient, admin: User, user: User
    ) -> None:
        old_headers = auth_headers(user)
        assert (await client.get(BASE, headers=old_headers)).status_code == 403
        await client.put(f"{BASE}/{user.id}/promote", headers=auth_headers(admin))
        assert (await client.get(BASE, headers=old_headers)).status_code == 200

    async def test_already_admin(self, client: AsyncClient, db: AsyncSession, admin: User) -> None:
        other = await make_account(db, email="other@example.com", role=Role.ADMIN)
        response = await client.put(f"{BASE}/{other.id}/promote", headers=auth_headers(admin))
        assert response.status_code == 400
        assert await audit_count(db) == 0

    async def test_missing_account(self, client: AsyncClient, admin: User) -> None:
        response = await client.put(f"{BASE}/4040/promote", headers=auth_headers(admin))
        assert response.status_code == 404

    async def test_concurrent_promotions_apply_once(self, db: AsyncSession, admin: User, user: User) -> None:
        second_admin = await make_account(db, email="admin2@example.com", name="Admin Two", role=Role.ADMIN)
        factory = get_session_factory()
        async with factory() as first, factory() as second:
            results = await asyncio.gather(
                users_service.promote(first, admin, user.id),
                users_service.promote(second, second_admin, user.id),
                return_exceptions=True,
            )

        assert sum(isinstance(r, User) for r in results) == 1
        assert sum(isinstance(r, AccountStateError) for r in results) == 1
        entries = await entries_for(db, user.id)
        assert [e.action for e in entries] == ["promote_user"]

    async def test_audit_failure_does_not_fail_promotion(
        self, client: AsyncClient, db: AsyncSession, admin: User, user: User, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(audit_service, "get_session_factory", broken_session_factory)
        response = await client.put(f"{BASE}/{user.id}/promote", headers=auth_headers(admin))
        assert response.status_code == 200

        await db.refresh(user)
        assert user.role == Role.ADMIN
        assert await audit_count(db) == 0


class TestDemote:
    async def test_demote(self, client: AsyncClient, db: AsyncSession, admin: User) -> None:
        other = await make_account(db, email="other@example.com", role=Role.ADMIN)
        response = await client.put(f"{BASE}/{other.id}/demote", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["role"] == "user"
        entries = await entries_for(db, other.id)
        assert [e.action for e in entries] == ["demote_user"]

    async def test_cannot_demote_self(self, client: AsyncClient, admin: User) -> None:
        response = await client.put(f"{BASE}/{admin.id}/demote", headers=auth_headers(admin))
        assert response.status_code == 400

    async def test_already_standard(self, client: AsyncClient, admin: User, user: User) -> None:
        response = await client.put(f"{BASE}/{user.id}/demote", headers=auth_headers(admin))
        assert response.status_code == 400


class TestActivation:
    async def test_deactivate_then_activate(
        self, client: AsyncClient, db: AsyncSession, admin: User, user: User
    ) -> None:
        headers = auth_headers(admin)
        user_headers = auth_headers(user)

        response = await client.put(f"{BASE}/{user.id}/deactivate", headers=headers)
        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert (await client.get("/api/v1/auth/me", headers=user_headers)).status_code == 401

        response = await client.put(f"{BASE}/{user.id}/activate", headers=headers)
        assert response.status_code == 200
        assert (await client.get("/api/v1/auth/me", headers=user_headers)).status_code == 200

        entries = await entries_for(db, user.id)
        assert sorted(e.action for e in entries) == ["activate_user", "deactivate_user"]

    async def test_cannot_deactivate_self(self, client: AsyncClient, admin: User) -> None:
        response = await client.put(f"{BASE}/{admin.id}/deactivate", headers=auth_headers(admin))
        assert response.status_code == 400

    async def test_concurrent_deactivations_apply_once(self, db: AsyncSession, admin: User, user: User) -> None:
        factory = get_session_factory()
        async with factory() as first, factory() as second:
            results = await asyncio.gather(
                users_service.deactivate(first, admin, user.id),
                users_service.deactivate(second, admin, user.id),
                return_exceptions=True,
            )

        assert sum(isinstance(r, AccountStateError) for r in results) == 1
        entries = await entries_for(db, user.id)
        assert [e.action for e in entries] == ["deactivate_user"]

    async def test_redundant_transitions(self, client: AsyncClient, db: AsyncSession, admin: User, user: User) -> None:
        headers = auth_headers(admin)
        assert (await client.put(f"{BASE}/{user.id}/activate", headers=headers)).status_code == 400
        await client.put(f"{BASE}/{user.id}/deactivate", headers=headers)
        assert (await client.put(f"{BASE}/{user.id}/deactivate", headers=headers)).status_code == 400
        assert len(await entries_for(db, user.id)) == 1


class TestListing:
    async def test_list_filters_and_pagination(self, client: AsyncClient, db: AsyncSession, admin: User) -> None:
        await make_account(db, email="carol@example.com", name="Carol")
        await make_account(db, email="dave@example.com", name="Dave", is_active=False)
        headers = auth_headers(admin)

        everyone = (await client.get(BASE, headers=headers)).json()
        assert everyone["total"] == 3
        assert "password_hash" not in everyone["users"][0]

        admins = (await client.get(BASE, headers=headers, params={"role": "admin"})).json()
        assert [u["email"] for u in admins["users"]] == [admin.email]

        inactive = (await client.get(BASE, headers=headers, params={"is_active": "false"})).json()
        assert [u["email"] for u in inactive["users"]] == ["dave@example.com"]

        search = (await client.get(BASE, headers=headers, params={"search": "CAR"})).json()
        assert [u["name"] for u in search["users"]] == ["Carol"]

        page = (await client.get(BASE, headers=headers, params={"limit": 1, "offset": 1})).json()
        assert len(page["users"]) == 1
        assert page["total"] == 3

    async def test_stats(self, client: AsyncClient, db: AsyncSession, admin: User, user: User) -> None:
        await make_account(db, email="off@example.com", is_active=False)
        response = await client.get(f"{BASE}/stats", headers=auth_headers(admin))
        data = response.json()
        assert data["total_users"] == 3
        assert data["admins"] == 1
        assert data["standard_users"] == 2
        assert data["active_users"] == 2
        assert data["inactive_users"] == 1
        assert len(data["recent_users"]) == 3

    async def test_get_one(self, client: AsyncClient, admin: User, user: User) -> None:
        response = await client.get(f"{BASE}/{user.id}", headers=auth_headers(admin))
        assert response.json()["email"] == user.email
        assert (await client.get(f"{BASE}/9999", headers=auth_headers(admin))).status_code == 404
