# portfolio_tracker/middleware/rate_limit.py
"""
Rate limiting with slowapi.

Limits are keyed by client IP and kept in process memory, outside any
portfolio lock. Per-endpoint limits are defined in
services/constants.py:

    RATE_LIMIT_DEFAULT    reads
    RATE_LIMIT_WRITE      transaction and portfolio writes
    RATE_LIMIT_ANALYTICS  performance, snapshots, harvest
    RATE_LIMIT_IMPORT     bulk and CSV imports
    RATE_LIMIT_HEALTH     health checks

Usage:
    from portfolio_tracker.middleware.rate_limit import limiter, RATE_LIMIT_WRITE

    @router.post("/")
    @limiter.limit(RATE_LIMIT_WRITE)
    def create(request: Request, ...):
        ...
"""

import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from portfolio_tracker.config import settings
from portfolio_tracker.services.constants import (
    RATE_LIMIT_ANALYTICS,
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_HEALTH,
    RATE_LIMIT_IMPORT,
    RATE_LIMIT_WRITE,
)

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 60


def _is_trusted_proxy(request: Request) -> bool:
    """Forwarded headers are honored only from configured proxies."""
    if settings.trust_proxy_headers:
        return True
    return get_remote_address(request) in settings.trusted_proxy_ips


def _get_client_ip(request: Request) -> str:
    """
    Client IP for rate-limit keying.

    X-Forwarded-For (first hop) and X-Real-IP are read only when the
    immediate peer is a trusted proxy, so clients cannot pick their own key.
    """
    if _is_trusted_proxy(request):
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

    return get_remote_address(request)


# =============================================================================
# LIMITER INSTANCE
# =============================================================================

limiter = Limiter(
    key_func=_get_client_ip,
    default_limits=[RATE_LIMIT_DEFAULT],
    enabled=not settings.is_test,
)


# =============================================================================
# RATE LIMIT EXCEEDED HANDLER
# =============================================================================

async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the standard error shape, with a Retry-After header."""
    limit_info = str(exc.detail) if exc.detail else "Rate limit exceeded"
    logger.warning(f"Rate limit exceeded for {_get_client_ip(request)}: {limit_info}")

    return JSONResponse(
        status_code=429,
        content={
            "error": f"Too many requests. {limit_info}",
            "code": "RATE_LIMITED",
            "details": {"retry_after": RETRY_AFTER_SECONDS},
        },
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


__all__ = [
    "limiter",
    "rate_limit_exceeded_handler",
    "SlowAPIMiddleware",
    "RATE_LIMIT_DEFAULT",
    "RATE_LIMIT_WRITE",
    "RATE_LIMIT_ANALYTICS",
    "RATE_LIMIT_IMPORT",
    "RATE_LIMIT_HEALTH",
]
