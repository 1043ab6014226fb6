"""Middleware tests: request ID, rate limiting, CORS, error format."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from dsasheet.middleware.logging import _redact_credentials


def _fake_redis(execute: AsyncMock) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = execute
    redis = MagicMock()
    redis.pipeline.return_value = pipe
    return redis


@pytest.fixture
def redis_count(monkeypatch):
    """Pretend Redis is up and reports ``count`` requests in the current window."""

    def install(count: int) -> MagicMock:
        redis = _fake_redis(AsyncMock(return_value=[count, True]))
        monkeypatch.setattr("dsasheet.middleware.rate_limit.get_redis", lambda: redis)
        return redis

    return install


async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert len(response.headers["x-request-id"]) == 36


async def test_request_id_preserved(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


async def test_request_id_truncated(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "x" * 500})
    assert response.headers["x-request-id"] == "x" * 128


async def test_rate_limit_headers(client: AsyncClient, redis_count) -> None:
    redis = redis_count(1)
    response = await client.get("/version")
    assert response.status_code == 200
    assert response.headers["x-ratelimit-limit"] == "100"
    assert response.headers["x-ratelimit-remaining"] == "99"
    key = redis.pipeline.return_value.incr.call_args.args[0]
    assert key.startswith("ratelimit:")


async def test_rate_limit_blocks_excess(client: AsyncClient, redis_count) -> None:
    """Request 101 in the window gets 429 with Retry-After."""
    redis_count(101)
    response = await client.get("/version")
    assert response.status_code == 429
    assert response.headers["retry-after"] == "60"
    assert response.headers["x-ratelimit-remaining"] == "0"
    assert "detail" in response.json()


async def test_health_exempt_from_rate_limit(client: AsyncClient, redis_count) -> None:
    redis = redis_count(10_000)
    response = await client.get("/health")
    assert response.status_code == 200
    redis.pipeline.assert_not_called()


async def test_rate_limit_fails_open_without_redis(client: AsyncClient) -> None:
    """No Redis configured: requests pass with no limit headers."""
    response = await client.get("/version")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


async def test_rate_limit_fails_open_when_redis_errors(client: AsyncClient, monkeypatch) -> None:
    redis = _fake_redis(AsyncMock(side_effect=RedisConnectionError("Connection refused")))
    monkeypatch.setattr("dsasheet.middleware.rate_limit.get_redis", lambda: redis)
    response = await client.get("/version")
    assert response.status_code == 200


async def test_cors_preflight(client: AsyncClient) -> None:
    response = await client.options(
        "/api/v1/progress",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


async def test_cors_unknown_origin(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"Origin": "http://evil.example"})
    assert "access-control-allow-origin" not in response.headers


async def test_404_returns_json(client: AsyncClient) -> None:
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.headers["content-type"] == "application/json"
    assert response.json()["detail"] == "Not Found"


async def test_validation_error_format(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/auth/register",
        json={"name": "   ", "email": "not-an-email", "password": "Passw0rdOK"},
    )
    assert response.status_code == 422
    data = response.json()
    assert data["detail"] == "Validation error"
    fields = {err["loc"][-1] for err in data["errors"]}
    assert {"name", "email"} <= fields
    assert all("ctx" not in err for err in data["errors"])


async def test_unauthenticated_carries_bearer_challenge(client: AsyncClient) -> None:
    response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_credentials_are_redacted_from_log_events() -> None:
    event = {"event": "login_failed", "email": "a@example.com", "password": "hunter2", "token": "abc"}
    cleaned = _redact_credentials(None, "info", event)
    assert cleaned["password"] == "[redacted]"
    assert cleaned["token"] == "[redacted]"
    assert cleaned["email"] == "a@example.com"
