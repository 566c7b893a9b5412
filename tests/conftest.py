# tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- A fake price oracle backed by dicts of closes
- An authenticated TestClient with the database and oracle overridden
- Factories for portfolios and transactions
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import get_price_oracle
from portfolio_tracker.main import app
from portfolio_tracker.models import Base, CostBasisMethod, Portfolio, Transaction, TransactionType
from portfolio_tracker.services.auth import JWTHandler
from portfolio_tracker.services.events import EventStore, TransactionInput
from portfolio_tracker.services.exceptions import PriceUnavailableError
from portfolio_tracker.services.ledger import TaxLotLedger
from portfolio_tracker.services.market_data.base import PriceOracle
from portfolio_tracker.services.portfolios import PortfolioService


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# FAKE PRICE ORACLE
# =============================================================================

class FakePriceOracle(PriceOracle):
    """
    In-memory PriceOracle for tests.

    Closes are configured per symbol; unknown symbols raise
    PriceUnavailableError like the real provider. FX rates default to 1
    for identical currencies and must be configured otherwise.
    """

    def __init__(self):
        self._closes: dict[str, dict[date, Decimal]] = {}
        self._quotes: dict[str, Decimal] = {}
        self._rates: dict[tuple[str, str], Decimal] = {}
        self.historical_calls = 0

    @property
    def name(self) -> str:
        return "fake"

    def set_closes(self, symbol: str, closes: dict[date, str | Decimal]) -> None:
        self._closes.setdefault(symbol.upper(), {}).update(
            {day: Decimal(str(price)) for day, price in closes.items()}
        )

    def set_flat_price(self, symbol: str, price: str | Decimal, start: date, end: date) -> None:
        """Same close on every day of [start, end]."""
        days = (end - start).days
        self.set_closes(symbol, {start + timedelta(days=i): price for i in range(days + 1)})

    def set_quote(self, symbol: str, price: str | Decimal) -> None:
        self._quotes[symbol.upper()] = Decimal(str(price))

    def set_rate(self, from_currency: str, to_currency: str, rate: str | Decimal) -> None:
        self._rates[(from_currency.upper(), to_currency.upper())] = Decimal(str(rate))

    def quote(self, symbol: str) -> Decimal:
        symbol = symbol.upper()
        if symbol in self._quotes:
            return self._quotes[symbol]
        closes = self._closes.get(symbol)
        if not closes:
            raise PriceUnavailableError(symbol, provider=self.name)
        return closes[max(closes)]

    def historical(self, symbol: str, start_date: date, end_date: date) -> dict[date, Decimal]:
        self.historical_calls += 1
        closes = self._closes.get(symbol.upper())
        if closes is None:
            raise PriceUnavailableError(symbol, provider=self.name)
        return {day: price for day, price in closes.items() if start_date <= day <= end_date}

    def fx(self, from_currency: str, to_currency: str, on: date) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return Decimal("1")
        rate = self._rates.get((from_currency.upper(), to_currency.upper()))
        if rate is None:
            raise PriceUnavailableError(f"{from_currency}{to_currency}", provider=self.name, on=on)
        return rate


@pytest.fixture
def oracle() -> FakePriceOracle:
    return FakePriceOracle()


# =============================================================================
# AUTHENTICATION
# =============================================================================

@pytest.fixture
def principal_id() -> str:
    return str(uuid.uuid4())


def get_auth_headers(principal_id: str) -> dict[str, str]:
    token = JWTHandler.create_access_token(principal_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(principal_id: str) -> dict[str, str]:
    return get_auth_headers(principal_id)


@pytest.fixture
def other_auth_headers() -> dict[str, str]:
    """Headers of a second principal, for ownership checks."""
    return get_auth_headers(str(uuid.uuid4()))


# =============================================================================
# TEST CLIENT
# =============================================================================

@pytest.fixture
def client(db: Session, oracle: FakePriceOracle) -> Iterator[TestClient]:
    """TestClient with the database session and price oracle overridden."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_price_oracle] = lambda: oracle

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def ledger() -> TaxLotLedger:
    return TaxLotLedger()


@pytest.fixture
def event_store(ledger: TaxLotLedger) -> EventStore:
    return EventStore(ledger)


@pytest.fixture
def make_portfolio(db: Session, principal_id: str) -> Callable[..., Portfolio]:
    """Create a portfolio owned by the test principal (or `owner_id`)."""
    service = PortfolioService()

    def _make(
            method: CostBasisMethod = CostBasisMethod.FIFO,
            owner_id: str | None = None,
            name: str = "Test Portfolio",
            base_currency: str = "USD",
    ) -> Portfolio:
        return service.create(db, owner_id or principal_id, name, base_currency, method)

    return _make


@pytest.fixture
def record(db: Session, event_store: EventStore) -> Callable[..., Transaction]:
    """Append one transaction through the EventStore."""

    def _record(
            portfolio: Portfolio,
            transaction_type: TransactionType | str,
            on: date,
            quantity: str | int | Decimal,
            symbol: str | None = None,
            price: str | int | Decimal | None = None,
            commission: str | int | Decimal = "0",
            currency: str = "USD",
            lot_selections: list[tuple[int, Decimal]] | None = None,
    ) -> Transaction:
        return event_store.append(
            db,
            portfolio,
            TransactionInput(
                transaction_type=TransactionType(transaction_type),
                date=on,
                quantity=Decimal(str(quantity)),
                symbol=symbol,
                price=Decimal(str(price)) if price is not None else None,
                commission=Decimal(str(commission)),
                currency=currency,
                lot_selections=lot_selections,
            ),
        )

    return _record

