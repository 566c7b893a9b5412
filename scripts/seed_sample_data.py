#!/usr/bin/env python3
# scripts/seed_sample_data.py
"""
Seed a demo portfolio through the services, so lots, holdings and
realized gains are derived exactly as the API would derive them.

    python scripts/seed_sample_data.py

Prints a bearer token for the demo principal.
"""
import logging
import sys
import uuid
from datetime import date
from decimal import Decimal
from pathlib import Path

# Setup path to import portfolio_tracker
project_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_dir))

from portfolio_tracker.database import SessionLocal
from portfolio_tracker.models import CorporateActionType, CostBasisMethod, Portfolio, TransactionType
from portfolio_tracker.services.auth import JWTHandler
from portfolio_tracker.services.corporate_actions import (
    CorporateActionDetector,
    CorporateActionInput,
    CorporateActionWorkflow,
)
from portfolio_tracker.services.events import EventStore, TransactionInput
from portfolio_tracker.services.exceptions import CorporateActionExistsError
from portfolio_tracker.services.ledger import TaxLotLedger
from portfolio_tracker.services.portfolios import PortfolioService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_PRINCIPAL = uuid.UUID("00000000-0000-4000-8000-000000000001")
DEMO_PORTFOLIO = "Taxable Brokerage"


def tx(transaction_type, on, quantity, symbol=None, price=None, commission="0"):
    return TransactionInput(
        transaction_type=transaction_type,
        date=on,
        quantity=Decimal(quantity),
        symbol=symbol,
        price=Decimal(price) if price is not None else None,
        commission=Decimal(commission),
    )


def seed():
    db = SessionLocal()
    ledger = TaxLotLedger()
    store = EventStore(ledger)
    workflow = CorporateActionWorkflow(ledger=ledger, event_store=store)
    principal_id = str(DEMO_PRINCIPAL)
    try:
        logger.info("Starting database seeding...")

        # 1. Portfolio
        portfolio = db.query(Portfolio).filter(
            Portfolio.owner_id == principal_id,
            Portfolio.name == DEMO_PORTFOLIO,
        ).first()
        if portfolio is None:
            portfolio = PortfolioService().create(db, principal_id, DEMO_PORTFOLIO, "USD", CostBasisMethod.FIFO)
            logger.info(f"Created portfolio {portfolio.id}: {portfolio.name}")
        else:
            logger.info(f"Portfolio exists: {portfolio.id}")

        # 2. Transactions
        if store.list_transactions(db, portfolio.id)[1] == 0:
            for data in (
                    tx(TransactionType.DEPOSIT, date(2023, 1, 3), "25000"),
                    tx(TransactionType.BUY, date(2023, 1, 4), "40", "NVDA", "147.50", "1"),
                    tx(TransactionType.BUY, date(2023, 3, 1), "60", "MSFT", "246.27", "1"),
                    tx(TransactionType.BUY, date(2023, 9, 12), "20", "NVDA", "451.78", "1"),
                    tx(TransactionType.SELL, date(2024, 2, 20), "30", "NVDA", "694.52", "1"),
                    tx(TransactionType.FEE, date(2024, 3, 31), "12.50"),
            ):
                store.append(db, portfolio, data)
            logger.info("Created sample transactions")

        # 3. A reviewed corporate action
        try:
            workflow.register(db, principal_id, CorporateActionInput(
                symbol="NVDA",
                action_type=CorporateActionType.SPLIT,
                action_date=date(2024, 6, 10),
                ratio=Decimal("10"),
                description="NVIDIA 10-for-1 stock split",
            ))
        except CorporateActionExistsError:
            logger.info("NVDA split already registered")

        for action in CorporateActionDetector().detect(db, portfolio):
            action = workflow.approve(db, portfolio, action.id, principal_id, notes="Seeded")
            logger.info(f"Action {action.id} on {action.affected_symbol}: {action.status.value}")

        logger.info("Seeding complete")
        print(f"Portfolio id: {portfolio.id}")
        print(f"Bearer token: {JWTHandler.create_access_token(principal_id)}")

    except Exception as e:
        logger.error(f"Seeding failed: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
