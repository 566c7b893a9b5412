# portfolio_tracker/dependencies.py
"""
Dependency injection module for FastAPI services.

This module provides singleton service instances that are shared across
all requests. Shared state (the price-oracle cache) only works if every
request sees the same instance.

Services are lazily initialized on first use to avoid import-time side effects.

Usage in routers:
    from portfolio_tracker.dependencies import (
        get_event_store,
        get_current_principal,
        get_portfolio_with_owner_check,
    )

    @router.post("/")
    def create_transaction(
        portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
        store: Annotated[EventStore, Depends(get_event_store)],
    ):
        ...
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from portfolio_tracker.config import settings
from portfolio_tracker.database import get_db
from portfolio_tracker.models import Portfolio, Transaction
from portfolio_tracker.services.auth import JWTHandler
from portfolio_tracker.services.corporate_actions import CorporateActionDetector, CorporateActionWorkflow
from portfolio_tracker.services.events import EventStore
from portfolio_tracker.services.exceptions import AuthorizationError, InvalidCredentialsError
from portfolio_tracker.services.imports import ImportService
from portfolio_tracker.services.ledger import TaxLotLedger
from portfolio_tracker.services.market_data import CachedPriceOracle, PriceOracle, YahooPriceOracle
from portfolio_tracker.services.performance import PerformanceService, SnapshotService
from portfolio_tracker.services.portfolios import PortfolioService
from portfolio_tracker.services.query import QueryService
from portfolio_tracker.services.tax import TaxService

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# SINGLETON SERVICE INSTANCES
# =============================================================================
# Order matters: define dependencies before dependents
# 1. get_price_oracle, get_ledger (no deps)
# 2. get_event_store, get_query_service (depend on ledger)
# 3. everything else


@lru_cache(maxsize=1)
def get_price_oracle() -> PriceOracle:
    """
    Get the singleton price oracle.

    Yahoo Finance behind the process-wide cache, so quotes and history
    fetched by one request are reused by the next.
    """
    logger.debug("Initializing singleton price oracle")
    return CachedPriceOracle(YahooPriceOracle(), ttl_seconds=settings.price_cache_ttl_seconds)


@lru_cache(maxsize=1)
def get_ledger() -> TaxLotLedger:
    logger.debug("Initializing singleton TaxLotLedger")
    return TaxLotLedger()


@lru_cache(maxsize=1)
def get_event_store() -> EventStore:
    logger.debug("Initializing singleton EventStore")
    return EventStore(get_ledger())


@lru_cache(maxsize=1)
def get_portfolio_service() -> PortfolioService:
    return PortfolioService()


@lru_cache(maxsize=1)
def get_query_service() -> QueryService:
    logger.debug("Initializing singleton QueryService")
    return QueryService(get_ledger())


@lru_cache(maxsize=1)
def get_import_service() -> ImportService:
    logger.debug("Initializing singleton ImportService")
    return ImportService(event_store=get_event_store(), ledger=get_ledger())


@lru_cache(maxsize=1)
def get_corporate_action_workflow() -> CorporateActionWorkflow:
    logger.debug("Initializing singleton CorporateActionWorkflow")
    return CorporateActionWorkflow(
        admin_principal_ids=settings.admin_principal_ids,
        ledger=get_ledger(),
        event_store=get_event_store(),
    )


@lru_cache(maxsize=1)
def get_corporate_action_detector() -> CorporateActionDetector:
    return CorporateActionDetector()


# =============================================================================
# PRICE-DEPENDENT SERVICES
# =============================================================================
# Not cached: they take the oracle as a dependency so tests can override
# get_price_oracle alone.


def get_performance_service(
    oracle: Annotated[PriceOracle, Depends(get_price_oracle)],
) -> PerformanceService:
    return PerformanceService(oracle)


def get_snapshot_service(
    oracle: Annotated[PriceOracle, Depends(get_price_oracle)],
) -> SnapshotService:
    return SnapshotService(oracle)


def get_tax_service(
    oracle: Annotated[PriceOracle, Depends(get_price_oracle)],
    query: Annotated[QueryService, Depends(get_query_service)],
) -> TaxService:
    return TaxService(oracle, query)


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> str:
    """
    Dependency that validates the bearer token and returns the principal id.

    Raises:
        InvalidCredentialsError: No token, or the token is invalid
        TokenExpiredError: The token has expired
    """
    if credentials is None:
        raise InvalidCredentialsError("Not authenticated")
    return JWTHandler.validate_access_token(credentials.credentials)


def get_portfolio_with_owner_check(
    portfolio_id: int,
    db: Annotated[Session, Depends(get_db)],
    principal_id: Annotated[str, Depends(get_current_principal)],
    service: Annotated[PortfolioService, Depends(get_portfolio_service)],
) -> Portfolio:
    """
    Dependency that fetches a portfolio and verifies ownership.

    Raises:
        PortfolioNotFoundError: Portfolio not found
        AuthorizationError: Principal doesn't own the portfolio
    """
    return service.get_owned(db, portfolio_id, principal_id)


def get_transaction_with_owner_check(
    transaction_id: int,
    db: Annotated[Session, Depends(get_db)],
    principal_id: Annotated[str, Depends(get_current_principal)],
    store: Annotated[EventStore, Depends(get_event_store)],
) -> Transaction:
    """
    Dependency that fetches a transaction and verifies its portfolio's owner.

    Raises:
        TransactionNotFoundError: Transaction not found
        AuthorizationError: Principal doesn't own the portfolio
    """
    tx = store.get(db, transaction_id)
    if tx.portfolio.owner_id != principal_id:
        raise AuthorizationError("Transaction", transaction_id)
    return tx


# =============================================================================
# CACHE MANAGEMENT
# =============================================================================

def clear_service_caches() -> None:
    """
    Clear all service singletons.

    Useful for testing or when you need to reset state.
    """
    get_price_oracle.cache_clear()
    get_ledger.cache_clear()
    get_event_store.cache_clear()
    get_portfolio_service.cache_clear()
    get_query_service.cache_clear()
    get_import_service.cache_clear()
    get_corporate_action_workflow.cache_clear()
    get_corporate_action_detector.cache_clear()
    logger.info("Cleared all service singleton caches")
