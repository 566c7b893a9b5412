# portfolio_tracker/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- PriceOracle implementations satisfy the protocol without modification
- Test fakes work without inheriting from the abstract base
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol


class PriceOracleProtocol(Protocol):
    """Interface required by PerformanceService, SnapshotService and TaxService."""

    @property
    def name(self) -> str:
        ...

    def quote(self, symbol: str) -> Decimal:
        ...

    def historical(self, symbol: str, start_date: date, end_date: date) -> dict[date, Decimal]:
        ...

    def fx(self, from_currency: str, to_currency: str, on: date) -> Decimal:
        ...
