# portfolio_tracker/main.py
"""
FastAPI application entry point.

This file:
- Configures application-wide logging
- Creates the FastAPI application and its lifespan (background scheduler)
- Registers global exception handlers
- Registers all routers
- Defines global endpoints (health checks)

Every error response has the shape {"error": ..., "code": ..., "details"?}.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.orm import Session

from portfolio_tracker.config import settings
from portfolio_tracker.database import get_db, ping
from portfolio_tracker.dependencies import (
    get_corporate_action_detector,
    get_price_oracle,
    get_snapshot_service,
)
from portfolio_tracker.middleware import (
    RATE_LIMIT_HEALTH,
    CorrelationIdMiddleware,
    SlowAPIMiddleware,
    limiter,
    rate_limit_exceeded_handler,
)
from portfolio_tracker.routers import (
    actions_router,
    corporate_actions_router,
    holdings_router,
    imports_router,
    performance_router,
    portfolios_router,
    snapshots_router,
    tax_lots_router,
    transactions_router,
)
from portfolio_tracker.schemas.errors import ErrorResponse
from portfolio_tracker.services.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BusinessRuleError,
    ConflictError,
    DeadlineExceededError,
    InsufficientSharesError,
    IrrNonConvergentError,
    MarketDataError,
    NotFoundError,
    ProviderUnavailableError,
    ServiceError,
    ValidationError,
)
from portfolio_tracker.services.scheduler import shutdown_scheduler, start_scheduler
from portfolio_tracker.utils import setup_logging

logger = logging.getLogger(__name__)

# =============================================================================
# LOGGING SETUP (must be before app creation)
# =============================================================================

setup_logging()


# =============================================================================
# APPLICATION SETUP
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.scheduler_enabled:
        start_scheduler(get_snapshot_service(get_price_oracle()), get_corporate_action_detector())
    yield
    shutdown_scheduler()


app = FastAPI(
    title=settings.app_name,
    description="Multi-tenant portfolio tracking API: tax lots, holdings, corporate actions and performance",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# CORS MIDDLEWARE
# =============================================================================
# Origins are configured via CORS_ORIGINS environment variable

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


# =============================================================================
# MIDDLEWARE (order matters: last added = first executed)
# =============================================================================

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# Outermost, so the correlation ID and deadline cover everything below
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================
# Handlers are registered per base class; Starlette resolves the most
# specific registered class along the exception's MRO.
# =============================================================================

app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


def _error_response(
        status_code: int,
        exc: ServiceError,
        details: dict[str, Any] | list[dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=exc.message, code=exc.code, details=details).model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle service-level validation errors (400)."""
    logger.warning(f"Validation error [{exc.code}]: {exc}")
    return _error_response(400, exc, details={"field": exc.field} if exc.field else None)


@app.exception_handler(BusinessRuleError)
async def business_rule_handler(request: Request, exc: BusinessRuleError) -> JSONResponse:
    """Handle business rule violations (400)."""
    logger.warning(f"Business rule violation [{exc.code}]: {exc}")
    details = None
    if isinstance(exc, InsufficientSharesError):
        details = {
            "symbol": exc.symbol,
            "requested": str(exc.requested),
            "available": str(exc.available),
        }
    elif isinstance(exc, IrrNonConvergentError):
        details = {
            "best_estimate": str(exc.best_estimate) if exc.best_estimate is not None else None,
            "iterations": exc.iterations,
        }
    return _error_response(400, exc, details=details)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    """Handle missing, invalid and expired bearer tokens (401)."""
    logger.warning(f"Authentication failed: {exc}")
    return _error_response(401, exc, headers={"WWW-Authenticate": "Bearer"})


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    """Handle access to another principal's resource (403)."""
    logger.warning(f"Permission denied: {exc.resource_type} {exc.resource_id}")
    return _error_response(403, exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Handle missing resources (404)."""
    logger.info(f"Not found [{exc.code}]: {exc}")
    details = None
    if exc.resource_type is not None:
        details = {"resource_type": exc.resource_type, "resource_id": exc.resource_id}
    return _error_response(404, exc, details=details)


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    """Handle state conflicts and duplicates (409)."""
    logger.warning(f"Conflict [{exc.code}]: {exc}")
    return _error_response(409, exc)


@app.exception_handler(DeadlineExceededError)
async def deadline_exceeded_handler(request: Request, exc: DeadlineExceededError) -> JSONResponse:
    """Handle requests that ran out of time (504)."""
    logger.error(f"Deadline exceeded during {exc.operation}")
    return _error_response(504, exc, details={"operation": exc.operation})


@app.exception_handler(ProviderUnavailableError)
async def provider_unavailable_handler(request: Request, exc: ProviderUnavailableError) -> JSONResponse:
    """Handle market data provider unavailable (503)."""
    logger.error(f"Provider unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(error=exc.message, code="SERVICE_UNAVAILABLE").model_dump(exclude_none=True),
    )


@app.exception_handler(MarketDataError)
async def market_data_error_handler(request: Request, exc: MarketDataError) -> JSONResponse:
    """Handle generic market data errors (500)."""
    logger.error(f"Market data error: {exc}")
    return _error_response(500, exc)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle generic service errors (500)."""
    logger.error(f"Service error: {exc}", exc_info=exc)
    return _error_response(500, exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle all HTTPExceptions with consistent error format.

    Converts FastAPI's default {"detail": "..."} format to the standard
    ErrorResponse format for API consistency.
    """
    codes = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        413: "PAYLOAD_TOO_LARGE",
        429: "RATE_LIMITED",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail) if exc.detail else "An error occurred",
            code=codes.get(exc.status_code, "HTTP_ERROR"),
        ).model_dump(exclude_none=True),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors with consistent format.

    Malformed input is a 400 VALIDATION_ERROR like any other validation
    failure, with one entry per offending field.
    """
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="Request validation failed",
            code="VALIDATION_ERROR",
            details=errors,
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error", code="INTERNAL_ERROR").model_dump(exclude_none=True),
    )


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

app.include_router(portfolios_router)  # /portfolios
app.include_router(transactions_router)  # /portfolios/{id}/transactions, /transactions/{id}
app.include_router(imports_router)  # /portfolios/{id}/transactions/import/*, /portfolios/{id}/imports
app.include_router(holdings_router)  # /portfolios/{id}/holdings, /portfolios/{id}/realized-gains
app.include_router(tax_lots_router)  # /portfolios/{id}/tax-lots/*
app.include_router(performance_router)  # /portfolios/{id}/performance/*
app.include_router(snapshots_router)  # /portfolios/{id}/snapshots/*
app.include_router(actions_router)  # /portfolios/{id}/actions/*
app.include_router(corporate_actions_router)  # /corporate-actions


# =============================================================================
# GLOBAL ENDPOINTS
# =============================================================================

@app.get("/", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def root(request: Request):
    """
    API root - returns basic application info.
    """
    return {
        "message": f"Welcome to {settings.app_name}!",
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Comprehensive health check endpoint.

    **Response Status Codes:**
    - 200: Database reachable
    - 503: Database unreachable - do not route traffic here

    The price cache and scheduler are reported but never fail the check.
    """
    from portfolio_tracker.services.market_data import CachedPriceOracle
    from portfolio_tracker.services.scheduler import get_scheduler

    checks = {}
    critical_healthy = True
    overall_status = "healthy"

    # Check 1: Database (CRITICAL)
    try:
        ping(db)
        checks["database"] = {
            "status": "healthy",
            "critical": True,
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = {
            "status": "unhealthy",
            "critical": True,
            "error": str(e),
        }
        critical_healthy = False
        overall_status = "unhealthy"

    # Check 2: Price oracle cache - NON-CRITICAL
    oracle = get_price_oracle()
    checks["price_oracle"] = {
        "status": "healthy",
        "critical": False,
        "provider": oracle.name,
    }
    if isinstance(oracle, CachedPriceOracle):
        checks["price_oracle"]["cache"] = oracle.stats()

    # Check 3: Scheduler - NON-CRITICAL
    scheduler = get_scheduler()
    checks["scheduler"] = {
        "status": "running" if scheduler is not None and scheduler.running else "stopped",
        "critical": False,
        "enabled": settings.scheduler_enabled,
    }

    response_data = {
        "status": overall_status,
        "checks": checks,
    }

    if not critical_healthy:
        return JSONResponse(
            status_code=503,
            content=response_data,
        )

    return response_data


@app.get("/health/live", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def liveness_check(request: Request):
    """
    Liveness check. Succeeds whenever the process is running; does not
    check dependencies (use /health/ready for that).
    """
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
@limiter.limit(RATE_LIMIT_HEALTH)
def readiness_check(request: Request, db: Session = Depends(get_db)):
    """
    Readiness check. Returns 503 while the database is unavailable.
    """
    try:
        ping(db)
        return {"status": "ready"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "error": "Database unavailable",
            },
        )
