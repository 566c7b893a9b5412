# portfolio_tracker/middleware/correlation.py
"""
Correlation ID and deadline middleware.

For each request this middleware:
1. Extracts or generates a correlation ID and echoes it in the response
2. Arms the request deadline (REQUEST_TIMEOUT_SECONDS) checked by long
   computations such as IRR iteration, ledger replay and valuation

Correlation ID Sources (in order of precedence):
1. X-Correlation-ID header (from client or upstream service)
2. X-Request-ID header (alternative header name)
3. Generated UUID if neither header is present

Usage:
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(CorrelationIdMiddleware, timeout_seconds=5)
"""

import logging
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from portfolio_tracker.config import settings
from portfolio_tracker.utils.context import (
    clear_correlation_id,
    clear_deadline,
    set_correlation_id,
    set_deadline,
)

logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Manages the correlation ID and the deadline of every request.

    Both live in context variables, which are copied into the task and
    threadpool that run the endpoint.
    """

    def __init__(self, app: ASGIApp, timeout_seconds: float | None = None) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.request_timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response],
    ) -> Response:
        correlation_id = self._get_correlation_id(request)
        set_correlation_id(correlation_id)
        set_deadline(self.timeout_seconds)

        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_deadline()
            clear_correlation_id()

    def _get_correlation_id(self, request: Request) -> str:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER)
        if correlation_id:
            return correlation_id

        correlation_id = request.headers.get(REQUEST_ID_HEADER)
        if correlation_id:
            return correlation_id

        return str(uuid.uuid4())
