"""Optional Redis connection used by the rate limiter.

Nothing about sessions or authorization is stored here: a missing or
unreachable Redis only turns rate limiting off.
"""

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()

_client: redis.Redis | None = None


async def init_redis(url: str, *, socket_timeout: float = 1.0, max_connections: int = 20) -> None:
    """Create the shared client. Connections are opened lazily on first command."""
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
    logger.info("redis_configured", max_connections=max_connections, socket_timeout=socket_timeout)


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def is_configured() -> bool:
    return _client is not None


def get_redis() -> redis.Redis:
    """The shared client. RuntimeError when Redis is not configured."""
    if _client is None:
        msg = "Redis is not configured"
        raise RuntimeError(msg)
    return _client
