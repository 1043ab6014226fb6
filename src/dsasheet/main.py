"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from dsasheet.audit.router import router as audit_router
from dsasheet.auth.router import router as auth_router
from dsasheet.auth.service import ensure_bootstrap_admin
from dsasheet.catalog.router import router as catalog_router
from dsasheet.config import get_settings
from dsasheet.database import close_db, get_session_factory, init_db
from dsasheet.health.router import router as health_router
from dsasheet.middleware import setup_middleware
from dsasheet.progress.router import router as progress_router
from dsasheet.redis_client import close_redis, init_redis
from dsasheet.users.router import router as users_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(
            settings.redis_url,
            socket_timeout=settings.redis_socket_timeout_seconds,
            max_connections=settings.redis_max_connections,
        )
    else:
        logger.info("redis_disabled", reason="DSA_REDIS_URL not set; rate limiting is off")

    # Never aborts start-up; failures are logged inside.
    async with get_session_factory()() as db:
        await ensure_bootstrap_admin(db, settings)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="DSA Sheet API",
        description="Accounts, problem progress tracking and admin audit trail for the DSA sheet",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(progress_router)
    app.include_router(catalog_router)
    app.include_router(users_router)
    app.include_router(audit_router)

    return app


app = create_app()
