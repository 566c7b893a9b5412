# tests/services/test_import_service.py
"""
Tests for the ImportService.

Covers:
- Bulk import commit: one batch, one rebuild, transactions tagged
- Simulation against existing history (SELL above open shares)
- dry_run and skip_invalid
- CSV imports with parse errors
- Batch listing and deletion
"""

from datetime import date
from decimal import Decimal
from io import BytesIO

import pytest

from portfolio_tracker.models import CostBasisMethod, TransactionType
from portfolio_tracker.services.exceptions import ValidationError
from portfolio_tracker.services.imports import ImportRecord, ImportService


@pytest.fixture
def imports(event_store, ledger) -> ImportService:
    return ImportService(event_store=event_store, ledger=ledger)


def buy(line, on, quantity, symbol="AAPL", price="100"):
    return ImportRecord(
        line=line, transaction_type=TransactionType.BUY, date=on,
        quantity=Decimal(quantity), symbol=symbol, price=Decimal(price),
    )


def sell(line, on, quantity, symbol="AAPL", price="110"):
    return ImportRecord(
        line=line, transaction_type=TransactionType.SELL, date=on,
        quantity=Decimal(quantity), symbol=symbol, price=Decimal(price),
    )


def deposit(line, on, amount):
    return ImportRecord(line=line, transaction_type=TransactionType.DEPOSIT, date=on, quantity=Decimal(amount))


# =============================================================================
# BULK IMPORT
# =============================================================================

class TestImportRecords:

    def test_commits_batch(self, db, imports, event_store, make_portfolio):
        portfolio = make_portfolio()

        result = imports.import_records(db, portfolio, [
            deposit(1, date(2024, 1, 1), "5000"),
            buy(2, date(2024, 1, 2), "10"),
            sell(3, date(2024, 2, 1), "4"),
        ], notes="initial load")

        assert result.success is True
        assert result.batch_id is not None
        assert result.success_count == 3
        assert result.error_count == 0
        assert len(result.transaction_ids) == 3
        transactions, total = event_store.list_transactions(db, portfolio.id)
        assert total == 3
        assert all(tx.import_batch_id == result.batch_id for tx in transactions)

    def test_rows_are_simulated_in_date_order(self, db, imports, make_portfolio):
        portfolio = make_portfolio()

        # SELL listed first but dated after the BUY
        result = imports.import_records(db, portfolio, [
            sell(1, date(2024, 2, 1), "4"),
            buy(2, date(2024, 1, 2), "10"),
        ])

        assert result.success is True

    def test_sell_above_open_shares_aborts(self, db, imports, event_store, make_portfolio):
        portfolio = make_portfolio()

        result = imports.import_records(db, portfolio, [
            buy(1, date(2024, 1, 2), "10"),
            sell(2, date(2024, 2, 1), "15"),
        ])

        assert result.success is False
        assert result.batch_id is None
        assert [e.line for e in result.errors] == [2]
        assert event_store.list_transactions(db, portfolio.id)[1] == 0

    def test_simulation_includes_existing_history(self, db, imports, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "5", "AAPL", "100")

        result = imports.import_records(db, portfolio, [sell(1, date(2024, 2, 1), "5")])

        assert result.success is True

    def test_backdated_import_that_breaks_existing_sale_is_rejected(self, db, imports, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "5", "AAPL", "100")
        record(portfolio, "SELL", date(2024, 3, 1), "5", "AAPL", "110")

        result = imports.import_records(db, portfolio, [sell(1, date(2024, 2, 1), "5")])

        assert result.success is False
        assert result.errors[0].line == 0
        assert "existing history" in result.errors[0].message

    def test_skip_invalid_commits_the_rest(self, db, imports, event_store, make_portfolio):
        portfolio = make_portfolio()

        result = imports.import_records(db, portfolio, [
            buy(1, date(2024, 1, 2), "10"),
            ImportRecord(line=2, transaction_type=TransactionType.BUY, date=date(2024, 1, 3), quantity=Decimal("1")),
            sell(3, date(2024, 2, 1), "50"),
            sell(4, date(2024, 2, 2), "5"),
        ], skip_invalid=True)

        assert result.success is True
        assert result.success_count == 2
        assert result.skipped_count == 2
        assert sorted(e.line for e in result.errors) == [2, 3]
        assert event_store.list_transactions(db, portfolio.id)[1] == 2

    def test_dry_run_writes_nothing(self, db, imports, event_store, make_portfolio):
        portfolio = make_portfolio()

        result = imports.import_records(db, portfolio, [buy(1, date(2024, 1, 2), "10")], dry_run=True)

        assert result.success is True
        assert result.validation_only is True
        assert result.batch_id is None
        assert result.success_count == 1
        assert event_store.list_transactions(db, portfolio.id)[1] == 0

    def test_specific_lot_sells_rejected(self, db, imports, make_portfolio):
        portfolio = make_portfolio(CostBasisMethod.SPECIFIC_LOT)

        result = imports.import_records(db, portfolio, [
            buy(1, date(2024, 1, 2), "10"),
            sell(2, date(2024, 2, 1), "5"),
        ])

        assert result.success is False
        assert result.errors[0].field == "transaction_type"

    def test_empty_import_rejected(self, db, imports, make_portfolio):
        with pytest.raises(ValidationError):
            imports.import_records(db, make_portfolio(), [])

    def test_oversized_import_rejected(self, db, imports, make_portfolio, monkeypatch):
        monkeypatch.setattr("portfolio_tracker.services.imports.service.MAX_IMPORT_ROWS", 2)
        rows = [deposit(i, date(2024, 1, i), "1") for i in range(1, 4)]

        with pytest.raises(ValidationError):
            imports.import_records(db, make_portfolio(), rows)


# =============================================================================
# CSV IMPORT
# =============================================================================

class TestImportCsv:

    CSV = (
        "date,type,symbol,quantity,price\n"
        "2024-01-02,BUY,AAPL,10,100\n"
        "2024-01-03,BOGUS,AAPL,1,100\n"
        "2024-02-01,SELL,AAPL,4,110\n"
    )

    def test_parse_errors_abort_without_skip_invalid(self, db, imports, event_store, make_portfolio):
        portfolio = make_portfolio()

        result = imports.import_csv(db, portfolio, BytesIO(self.CSV.encode()), "trades.csv")

        assert result.success is False
        assert result.total_rows == 3
        assert result.errors[0].line == 3
        assert event_store.list_transactions(db, portfolio.id)[1] == 0

    def test_parse_errors_skipped(self, db, imports, make_portfolio):
        portfolio = make_portfolio()

        result = imports.import_csv(
            db, portfolio, BytesIO(self.CSV.encode()), "trades.csv", skip_invalid=True
        )

        assert result.success is True
        assert result.success_count == 2
        assert result.skipped_count == 1

        batch = imports.list_batches(db, portfolio.id)[0]
        assert batch.source == "csv"
        assert batch.filename == "trades.csv"
        assert batch.transaction_count == 2

    def test_missing_column_rejects_file(self, db, imports, make_portfolio):
        result = imports.import_csv(
            db, make_portfolio(), BytesIO(b"date,symbol\n2024-01-02,AAPL\n"), "bad.csv", skip_invalid=True
        )
        assert result.success is False
        assert result.errors[0].line == 0


# =============================================================================
# BATCHES
# =============================================================================

class TestBatches:

    def test_delete_batch_leaves_other_transactions(self, db, imports, event_store, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", date(2024, 1, 1), "1000")
        result = imports.import_records(db, portfolio, [buy(1, date(2024, 1, 2), "3"), buy(2, date(2024, 1, 3), "2")])

        assert imports.delete_batch(db, portfolio, result.batch_id) == 2

        transactions, total = event_store.list_transactions(db, portfolio.id)
        assert total == 1
        assert transactions[0].transaction_type == TransactionType.DEPOSIT
        assert imports.list_batches(db, portfolio.id) == []
