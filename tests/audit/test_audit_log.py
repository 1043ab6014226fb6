"""Tests for the audit log: append, queries, failure isolation and the admin API."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dsasheet.audit import service as audit_service
from dsasheet.audit.service import actor_activity, entity_history, recent_activity, record_action
from dsasheet.config import get_settings
from dsasheet.db.models import AuditAction, AuditEntry, EntityType, Role, User
from tests.conftest import audit_count, auth_headers, broken_session_factory, make_account


class TestRecordAction:
    async def test_appends_entry(self, db: AsyncSession, admin: User) -> None:
        entry = await record_action(
            admin.id, AuditAction.CREATE_TOPIC, 12, EntityType.TOPIC, {"title": "Graphs"}
        )
        assert entry is not None
        assert entry.id is not None

        stored = (await db.execute(select(AuditEntry))).scalar_one()
        assert stored.actor_id == admin.id
        assert stored.action == "create_topic"
        assert stored.entity_id == "12"
        assert stored.entity_type == "topic"
        assert stored.details == {"title": "Graphs"}
        assert stored.created_at is not None

    async def test_entity_is_optional(self, db: AsyncSession, admin: User) -> None:
        entry = await record_action(admin.id, AuditAction.UPDATE_TOPIC)
        assert entry is not None
        assert entry.entity_id is None
        assert entry.entity_type is None
        assert entry.details == {}

    async def test_store_failure_is_swallowed(
        self, db: AsyncSession, admin: User, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(audit_service, "get_session_factory", broken_session_factory)
        result = await record_action(admin.id, AuditAction.PROMOTE_USER, admin.id, EntityType.USER)
        assert result is None
        assert await audit_count(db) == 0


class TestQueries:
    async def test_actor_activity_newest_first_and_bounded(self, db: AsyncSession, admin: User) -> None:
        other = await make_account(db, email="other-admin@example.com", role=Role.ADMIN)
        for topic_id in range(1, 6):
            await record_action(admin.id, AuditAction.UPDATE_TOPIC, topic_id, EntityType.TOPIC)
        await record_action(other.id, AuditAction.DELETE_TOPIC, 99, EntityType.TOPIC)

        entries = await actor_activity(db, admin.id, limit=3)
        assert [e.entity_id for e in entries] == ["5", "4", "3"]
        assert all(e.actor_id == admin.id for e in entries)

    async def test_limit_is_clamped(
        self, db: AsyncSession, admin: User, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DSA_AUDIT_MAX_PAGE_SIZE", "2")
        get_settings.cache_clear()
        for topic_id in range(4):
            await record_action(admin.id, AuditAction.UPDATE_TOPIC, topic_id, EntityType.TOPIC)
        assert len(await recent_activity(db, limit=100)) == 2
        assert len(await actor_activity(db, admin.id)) == 2

    async def test_entity_history_is_complete(self, db: AsyncSession, admin: User) -> None:
        await record_action(admin.id, AuditAction.CREATE_PROBLEM, 7, EntityType.PROBLEM)
        await record_action(admin.id, AuditAction.UPDATE_PROBLEM, 7, EntityType.PROBLEM)
        await record_action(admin.id, AuditAction.UPDATE_PROBLEM, 8, EntityType.PROBLEM)
        await record_action(admin.id, AuditAction.UPDATE_TOPIC, 7, EntityType.TOPIC)
        await record_action(admin.id, AuditAction.DELETE_PROBLEM, 7, EntityType.PROBLEM)

        history = await entity_history(db, EntityType.PROBLEM, 7)
        assert [e.action for e in history] == ["delete_problem", "update_problem", "create_problem"]

    async def test_recent_activity_spans_actors(self, db: AsyncSession, admin: User) -> None:
        other = await make_account(db, email="other-admin@example.com", role=Role.ADMIN)
        await record_action(admin.id, AuditAction.CREATE_TOPIC, 1, EntityType.TOPIC)
        await record_action(other.id, AuditAction.CREATE_TOPIC, 2, EntityType.TOPIC)
        entries = await recent_activity(db)
        assert [e.actor_id for e in entries] == [other.id, admin.id]


class TestAuditApi:
    async def test_requires_admin(self, client: AsyncClient, user: User) -> None:
        anonymous = await client.get("/api/v1/audit/recent")
        standard = await client.get("/api/v1/audit/recent", headers=auth_headers(user))
        assert anonymous.status_code == 401
        assert standard.status_code == 403

    async def test_recent_and_entity_views(self, client: AsyncClient, admin: User, user: User) -> None:
        headers = auth_headers(admin)
        promoted = await client.put(f"/api/v1/users/{user.id}/promote", headers=headers)
        assert promoted.status_code == 200

        recent = await client.get("/api/v1/audit/recent", headers=headers)
        assert recent.status_code == 200
        entry = recent.json()["entries"][0]
        assert entry["action"] == "promote_user"
        assert entry["actor"]["email"] == admin.email
        assert entry["metadata"]["new_role"] == "admin"

        history = await client.get(f"/api/v1/audit/entities/user/{user.id}", headers=headers)
        assert history.json()["count"] == 1

        by_actor = await client.get(f"/api/v1/audit/actors/{admin.id}", headers=headers)
        assert by_actor.json()["count"] == 1

    async def test_unknown_entity_type_rejected(self, client: AsyncClient, admin: User) -> None:
        response = await client.get("/api/v1/audit/entities/comment/1", headers=auth_headers(admin))
        assert response.status_code == 422

    async def test_no_write_routes(self, client: AsyncClient, admin: User) -> None:
        headers = auth_headers(admin)
        assert (await client.post("/api/v1/audit/recent", headers=headers)).status_code == 405
        assert (await client.delete("/api/v1/audit/entities/user/1", headers=headers)).status_code == 405
