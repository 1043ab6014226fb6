"""HTTP middleware stack."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dsasheet.config import Settings
from dsasheet.middleware.error_handler import setup_error_handlers
from dsasheet.middleware.logging import setup_logging
from dsasheet.middleware.rate_limit import RateLimitMiddleware
from dsasheet.middleware.request_id import RequestIdMiddleware

_EXPOSED_HEADERS = ["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"]


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Install logging, error handlers and middleware.

    The last middleware added runs outermost, so the order below is
    CORS > request id > rate limit > routes. CORS headers therefore reach
    429 responses too, and those carry a request id.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        expose_headers=_EXPOSED_HEADERS,
    )
