"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

# Settings are read on first use, so the environment must be in place before
# anything from dsasheet is imported.
TEST_JWT_SECRET = "test-secret-key-for-dsasheet-tests-0123456789"
os.environ["DSA_JWT_SECRET"] = TEST_JWT_SECRET
os.environ["DSA_JWT_ALGORITHM"] = "HS256"
os.environ["DSA_REDIS_URL"] = ""
os.environ["DSA_LOG_FORMAT"] = "console"
os.environ["DSA_LOG_LEVEL"] = "WARNING"
os.environ["DSA_ADMIN_EMAIL"] = ""
os.environ["DSA_ADMIN_PASSWORD"] = ""

from dsasheet.auth.password import hash_password  # noqa: E402
from dsasheet.auth.tokens import create_access_token, reset_keys  # noqa: E402
from dsasheet.config import get_settings  # noqa: E402
from dsasheet.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from dsasheet.db.base import Base  # noqa: E402
from dsasheet.db.models import AuditEntry, Problem, Role, Topic, User  # noqa: E402
from dsasheet.main import create_app  # noqa: E402

DEFAULT_PASSWORD = "Passw0rdOK"

# Hashing is deliberately slow; every fixture account shares one hash.
_DEFAULT_HASH = hash_password(DEFAULT_PASSWORD)


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    """Drop cached settings and signing keys around every test."""
    get_settings.cache_clear()
    reset_keys()
    yield
    get_settings.cache_clear()
    reset_keys()


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[str, None]:
    """A fresh SQLite file database with every table created."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'dsasheet.db'}"
    await init_db(url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield url
    await close_db()


@pytest_asyncio.fixture
async def db(database: str) -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(database: str) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against a fresh app. The lifespan is not run; ``database`` initialises the store."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


async def make_account(
    db: AsyncSession,
    *,
    email: str = "user@example.com",
    name: str = "Test User",
    role: Role = Role.USER,
    is_active: bool = True,
    password: str | None = None,
) -> User:
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password) if password else _DEFAULT_HASH,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    return user


async def make_topic(db: AsyncSession, *, slug: str = "arrays", title: str = "Arrays", order: int = 0) -> Topic:
    topic = Topic(title=title, slug=slug, order=order)
    db.add(topic)
    await db.commit()
    return topic


async def make_problem(
    db: AsyncSession,
    topic: Topic,
    *,
    slug: str = "two-sum",
    title: str = "Two Sum",
    difficulty: str = "Easy",
    is_active: bool = True,
    tags: list[str] | None = None,
) -> Problem:
    problem = Problem(
        topic_id=topic.id, title=title, slug=slug, difficulty=difficulty, is_active=is_active, tags=tags or []
    )
    db.add(problem)
    await db.commit()
    return problem


def auth_headers(user: User, **overrides: Any) -> dict[str, str]:
    """Bearer header for ``user``. ``role=`` overrides the role claim written into the token."""
    token = create_access_token(user.id, user.email, overrides.get("role", user.role))
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def user(db: AsyncSession) -> User:
    return await make_account(db)


@pytest_asyncio.fixture
async def admin(db: AsyncSession) -> User:
    return await make_account(db, email="admin@example.com", name="Admin", role=Role.ADMIN)


@pytest_asyncio.fixture
async def problem(db: AsyncSession) -> Problem:
    topic = await make_topic(db)
    return await make_problem(db, topic)


async def audit_count(db: AsyncSession) -> int:
    return await db.scalar(select(func.count()).select_from(AuditEntry))


def broken_session_factory() -> MagicMock:
    """Stands in for get_session_factory(); every commit fails like a lost connection."""
    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    session.commit = AsyncMock(side_effect=OperationalError("INSERT INTO admin_logs", {}, Exception("disk I/O error")))
    return MagicMock(return_value=session)
