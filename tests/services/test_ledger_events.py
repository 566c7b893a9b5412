# tests/services/test_ledger_events.py
"""
Tests for the EventStore and the persistent TaxLotLedger.

Covers:
- In-order appends (incremental) and backdated appends (rebuild)
- Sales above the open quantity leave no trace
- Incremental appends and full rebuilds store identical lots and gains
- Edits and deletes re-derive lots, gains and holdings
- SPECIFIC_LOT selections resolved from tax lot ids
- Transaction validation rules
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from portfolio_tracker.models import (
    CostBasisMethod,
    Holding,
    ImportBatch,
    RealizedGain,
    TaxLot,
    Transaction,
    TransactionType,
)
from portfolio_tracker.services.events import TransactionInput
from portfolio_tracker.services.exceptions import (
    ImportBatchNotFoundError,
    InsufficientSharesError,
    InvalidCostBasisMethodError,
    InvalidLotSelectionError,
    TransactionNotFoundError,
    ValidationError,
)
from portfolio_tracker.services.ledger import open_lots_as_of


def lots_of(db, portfolio):
    return list(db.scalars(
        select(TaxLot).where(TaxLot.portfolio_id == portfolio.id).order_by(TaxLot.purchase_date)
    ).all())


def gains_of(db, portfolio):
    return list(db.scalars(
        select(RealizedGain).where(RealizedGain.portfolio_id == portfolio.id).order_by(RealizedGain.id)
    ).all())


def holding_of(db, portfolio, symbol):
    return db.scalar(select(Holding).where(Holding.portfolio_id == portfolio.id, Holding.symbol == symbol))


# =============================================================================
# APPEND
# =============================================================================

class TestAppend:

    def test_basic_fifo_sale(self, db, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2023, 1, 2), "10", "AAPL", "100")
        record(portfolio, "BUY", date(2023, 6, 1), "10", "AAPL", "120")
        record(portfolio, "SELL", date(2024, 7, 1), "15", "AAPL", "150")

        gains = gains_of(db, portfolio)
        assert [(g.quantity, g.cost_basis, g.proceeds) for g in gains] == [
            (Decimal("10"), Decimal("1000"), Decimal("1500")),
            (Decimal("5"), Decimal("600"), Decimal("750")),
        ]
        assert sum(g.gain for g in gains) == Decimal("650")

        lots = lots_of(db, portfolio)
        assert len(lots) == 1
        assert lots[0].quantity == Decimal("5")
        assert lots[0].cost_basis == Decimal("600")

        holding = holding_of(db, portfolio, "AAPL")
        assert holding.quantity == Decimal("5")
        assert holding.total_cost_basis == Decimal("600")
        assert holding.avg_cost_price == Decimal("120")

    def test_symbol_is_normalized(self, db, make_portfolio, record):
        portfolio = make_portfolio()
        tx = record(portfolio, "BUY", date(2024, 1, 2), "1", " aapl ", "100")
        assert tx.symbol == "AAPL"

    def test_cash_transactions_do_not_create_lots(self, db, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", date(2024, 1, 2), "1000")
        record(portfolio, "FEE", date(2024, 1, 3), "5")

        assert lots_of(db, portfolio) == []

    def test_insufficient_shares_changes_nothing(self, db, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")

        with pytest.raises(InsufficientSharesError) as exc_info:
            record(portfolio, "SELL", date(2024, 2, 1), "15", "AAPL", "110")

        assert exc_info.value.requested == Decimal("15")
        assert exc_info.value.available == Decimal("10")
        transactions = db.scalars(select(Transaction).where(Transaction.portfolio_id == portfolio.id)).all()
        assert len(transactions) == 1
        assert lots_of(db, portfolio)[0].quantity == Decimal("10")
        assert gains_of(db, portfolio) == []

    def test_backdated_buy_rebuilds_and_keeps_lot_ids(self, db, make_portfolio, record):
        portfolio = make_portfolio()
        march = record(portfolio, "BUY", date(2024, 3, 1), "10", "AAPL", "100")
        record(portfolio, "SELL", date(2024, 4, 1), "5", "AAPL", "110")
        march_lot_id = lots_of(db, portfolio)[0].id

        january = record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "80")

        lots = {lot.source_transaction_id: lot for lot in lots_of(db, portfolio)}
        assert lots[march.id].id == march_lot_id
        assert lots[march.id].quantity == Decimal("10")
        assert lots[january.id].quantity == Decimal("5")

        gains = gains_of(db, portfolio)
        assert len(gains) == 1
        assert gains[0].source_transaction_id == january.id
        assert gains[0].cost_basis == Decimal("400")
        assert portfolio.ledger_stale is False

    def test_backdated_sell_that_breaks_history_is_rejected(self, db, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 3, 1), "10", "AAPL", "100")

        with pytest.raises(InsufficientSharesError):
            record(portfolio, "SELL", date(2024, 2, 1), "5", "AAPL", "110")

        assert lots_of(db, portfolio)[0].quantity == Decimal("10")

    def test_same_day_events_keep_insertion_order(self, db, make_portfolio, record, event_store):
        portfolio = make_portfolio()
        first = record(portfolio, "BUY", date(2024, 1, 2), "1", "AAPL", "100")
        second = record(portfolio, "BUY", date(2024, 1, 2), "1", "AAPL", "101")

        transactions, total = event_store.list_transactions(db, portfolio.id)
        assert total == 2
        assert [tx.id for tx in transactions] == [first.id, second.id]


# =============================================================================
# INCREMENTAL VS REBUILD
# =============================================================================

def stored_state(db, portfolio):
    db.expire_all()
    lots = [(lot.source_transaction_id, lot.quantity, lot.cost_basis) for lot in lots_of(db, portfolio)]
    gains = sorted(
        (g.sale_transaction_id, g.quantity, g.cost_basis, g.proceeds) for g in gains_of(db, portfolio)
    )
    return lots, gains


class TestReplayConsistency:

    def test_partial_sales_with_repeating_cost_match_rebuild(self, db, make_portfolio, record, ledger):
        portfolio = make_portfolio()
        buy = record(portfolio, "BUY", date(2024, 1, 2), "3", "AAPL", "1", commission="7")
        first = record(portfolio, "SELL", date(2024, 2, 1), "1", "AAPL", "1")
        second = record(portfolio, "SELL", date(2024, 3, 1), "1", "AAPL", "1")

        incremental = stored_state(db, portfolio)
        ledger.rebuild(db, portfolio)
        db.commit()
        rebuilt = stored_state(db, portfolio)

        assert incremental == rebuilt
        lots, gains = rebuilt
        assert lots == [(buy.id, Decimal("1"), Decimal("3.3333333333"))]
        assert gains == [
            (first.id, Decimal("1"), Decimal("3.3333333333"), Decimal("1")),
            (second.id, Decimal("1"), Decimal("3.3333333334"), Decimal("1")),
        ]

    def test_commission_shares_sum_to_commission(self, db, make_portfolio, record, ledger):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "1", "AAPL", "10")
        record(portfolio, "BUY", date(2024, 1, 3), "1", "AAPL", "10")
        record(portfolio, "BUY", date(2024, 1, 4), "1", "AAPL", "10")
        record(portfolio, "SELL", date(2024, 2, 1), "3", "AAPL", "20", commission="1")

        incremental = stored_state(db, portfolio)
        ledger.rebuild(db, portfolio)
        db.commit()
        rebuilt = stored_state(db, portfolio)

        assert incremental == rebuilt
        _, gains = rebuilt
        assert [proceeds for *_, proceeds in gains] == [
            Decimal("19.6666666666"), Decimal("19.6666666667"), Decimal("19.6666666667"),
        ]
        assert sum(proceeds for *_, proceeds in gains) == Decimal("59")


# =============================================================================
# SPECIFIC_LOT
# =============================================================================

class TestSpecificLot:

    def test_sell_from_named_lot(self, db, make_portfolio, record):
        portfolio = make_portfolio(CostBasisMethod.SPECIFIC_LOT)
        first = record(portfolio, "BUY", date(2023, 1, 2), "10", "AAPL", "100")
        record(portfolio, "BUY", date(2023, 6, 1), "10", "AAPL", "120")
        second_lot = next(lot for lot in lots_of(db, portfolio) if lot.source_transaction_id != first.id)

        sale = record(
            portfolio, "SELL", date(2024, 7, 1), "4", "AAPL", "150",
            lot_selections=[(second_lot.id, Decimal("4"))],
        )

        assert sale.lot_selection == [{"source_transaction_id": second_lot.source_transaction_id, "quantity": "4"}]
        gains = gains_of(db, portfolio)
        assert gains[0].lot_id == second_lot.id
        assert gains[0].cost_basis == Decimal("480")

    def test_missing_selection_rejected(self, db, make_portfolio, record):
        portfolio = make_portfolio(CostBasisMethod.SPECIFIC_LOT)
        record(portfolio, "BUY", date(2023, 1, 2), "10", "AAPL", "100")

        with pytest.raises(InvalidCostBasisMethodError):
            record(portfolio, "SELL", date(2024, 7, 1), "4", "AAPL", "150")

    def test_selection_on_fifo_portfolio_rejected(self, db, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2023, 1, 2), "10", "AAPL", "100")
        lot = lots_of(db, portfolio)[0]

        with pytest.raises(InvalidCostBasisMethodError):
            record(portfolio, "SELL", date(2024, 7, 1), "4", "AAPL", "150", lot_selections=[(lot.id, Decimal("4"))])

    def test_unknown_lot_id_rejected(self, db, make_portfolio, record):
        portfolio = make_portfolio(CostBasisMethod.SPECIFIC_LOT)
        record(portfolio, "BUY", date(2023, 1, 2), "10", "AAPL", "100")

        with pytest.raises(InvalidLotSelectionError):
            record(portfolio, "SELL", date(2024, 7, 1), "4", "AAPL", "150", lot_selections=[(9999, Decimal("4"))])

    def test_selection_sum_mismatch_rejected(self, db, make_portfolio, record):
        portfolio = make_portfolio(CostBasisMethod.SPECIFIC_LOT)
        record(portfolio, "BUY", date(2023, 1, 2), "10", "AAPL", "100")
        lot = lots_of(db, portfolio)[0]

        with pytest.raises(InvalidLotSelectionError):
            record(portfolio, "SELL", date(2024, 7, 1), "4", "AAPL", "150", lot_selections=[(lot.id, Decimal("3"))])


# =============================================================================
# VALIDATION
# =============================================================================

class TestValidation:

    @pytest.mark.parametrize("kwargs", [
        {"transaction_type": TransactionType.BUY, "quantity": Decimal("1"), "price": Decimal("10")},
        {"transaction_type": TransactionType.BUY, "quantity": Decimal("1"), "symbol": "AAPL"},
        {"transaction_type": TransactionType.BUY, "quantity": Decimal("0"), "symbol": "AAPL", "price": Decimal("1")},
        {"transaction_type": TransactionType.BUY, "quantity": Decimal("1"), "symbol": "AAPL", "price": Decimal("-1")},
        {"transaction_type": TransactionType.BUY, "quantity": Decimal("1"), "symbol": "AAPL", "price": Decimal("1"),
         "commission": Decimal("-1")},
        {"transaction_type": TransactionType.DEPOSIT, "quantity": Decimal("1"), "currency": "US"},
        {"transaction_type": TransactionType.DIVIDEND, "quantity": Decimal("1")},
    ])
    def test_invalid_inputs_rejected(self, make_portfolio, event_store, kwargs):
        portfolio = make_portfolio()
        with pytest.raises(ValidationError):
            event_store.validate(portfolio, TransactionInput(date=date(2024, 1, 2), **kwargs))

    def test_lot_selection_on_buy_rejected(self, make_portfolio, event_store):
        portfolio = make_portfolio(CostBasisMethod.SPECIFIC_LOT)
        data = TransactionInput(
            transaction_type=TransactionType.BUY, date=date(2024, 1, 2), quantity=Decimal("1"),
            symbol="AAPL", price=Decimal("1"), lot_selections=[(1, Decimal("1"))],
        )
        with pytest.raises(InvalidLotSelectionError):
            event_store.validate(portfolio, data)


# =============================================================================
# UPDATE / DELETE
# =============================================================================

class TestEditAndDelete:

    def test_update_rederives_lots(self, db, make_portfolio, record, event_store):
        portfolio = make_portfolio()
        tx = record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")

        event_store.update(db, portfolio, tx, TransactionInput(
            transaction_type=TransactionType.BUY, date=date(2024, 1, 2), quantity=Decimal("12"),
            symbol="AAPL", price=Decimal("100"),
        ))

        lot = lots_of(db, portfolio)[0]
        assert lot.quantity == Decimal("12")
        assert lot.cost_basis == Decimal("1200")

    def test_update_that_breaks_a_later_sale_rolls_back(self, db, make_portfolio, record, event_store):
        portfolio = make_portfolio()
        buy = record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
        record(portfolio, "SELL", date(2024, 2, 1), "8", "AAPL", "110")

        with pytest.raises(InsufficientSharesError):
            event_store.update(db, portfolio, buy, TransactionInput(
                transaction_type=TransactionType.BUY, date=date(2024, 1, 2), quantity=Decimal("5"),
                symbol="AAPL", price=Decimal("100"),
            ))

        assert event_store.get(db, buy.id).quantity == Decimal("10")
        assert lots_of(db, portfolio)[0].quantity == Decimal("2")

    def test_delete_sale_restores_lots_and_keeps_gains(self, db, make_portfolio, record, event_store):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
        sale = record(portfolio, "SELL", date(2024, 2, 1), "4", "AAPL", "110")

        event_store.delete(db, portfolio, sale)

        assert lots_of(db, portfolio)[0].quantity == Decimal("10")
        gains = gains_of(db, portfolio)
        assert len(gains) == 1
        assert gains[0].sale_transaction_id == sale.id

    def test_update_sale_into_cash_event_drops_its_gains(self, db, make_portfolio, record, event_store):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
        sale = record(portfolio, "SELL", date(2024, 2, 1), "4", "AAPL", "110")

        event_store.update(db, portfolio, sale, TransactionInput(
            transaction_type=TransactionType.DEPOSIT, date=date(2024, 2, 1), quantity=Decimal("500"),
        ))

        assert gains_of(db, portfolio) == []
        assert lots_of(db, portfolio)[0].quantity == Decimal("10")
        assert holding_of(db, portfolio, "AAPL").quantity == Decimal("10")

    def test_update_sale_quantity_replaces_its_gains(self, db, make_portfolio, record, event_store):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
        sale = record(portfolio, "SELL", date(2024, 2, 1), "4", "AAPL", "110")

        event_store.update(db, portfolio, sale, TransactionInput(
            transaction_type=TransactionType.SELL, date=date(2024, 2, 1), quantity=Decimal("6"),
            symbol="AAPL", price=Decimal("110"),
        ))

        gains = gains_of(db, portfolio)
        assert [(g.sale_transaction_id, g.quantity) for g in gains] == [(sale.id, Decimal("6"))]

    def test_delete_last_buy_removes_holding(self, db, make_portfolio, record, event_store):
        portfolio = make_portfolio()
        buy = record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")

        event_store.delete(db, portfolio, buy)

        assert lots_of(db, portfolio) == []
        assert holding_of(db, portfolio, "AAPL") is None

    def test_get_unknown_transaction_raises(self, db, event_store):
        with pytest.raises(TransactionNotFoundError):
            event_store.get(db, 424242)

    def test_delete_batch_removes_only_its_transactions(self, db, make_portfolio, record, event_store, ledger):
        portfolio = make_portfolio()
        manual = record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")

        batch = ImportBatch(portfolio_id=portfolio.id, source="bulk", success_count=2)
        db.add(batch)
        db.flush()
        for quantity in ("3", "4"):
            event_store.stage(db, portfolio, TransactionInput(
                transaction_type=TransactionType.BUY, date=date(2024, 2, 1), quantity=Decimal(quantity),
                symbol="MSFT", price=Decimal("300"),
            ), import_batch_id=batch.id)
        ledger.rebuild(db, portfolio)
        db.commit()

        deleted = event_store.delete_batch(db, portfolio, batch.id)

        assert deleted == 2
        remaining, total = event_store.list_transactions(db, portfolio.id)
        assert total == 1
        assert remaining[0].id == manual.id
        assert holding_of(db, portfolio, "MSFT") is None

    def test_delete_unknown_batch_raises(self, db, make_portfolio, event_store):
        portfolio = make_portfolio()
        with pytest.raises(ImportBatchNotFoundError):
            event_store.delete_batch(db, portfolio, 999)


# =============================================================================
# LISTING AND POINT-IN-TIME
# =============================================================================

class TestListing:

    def test_filters_and_pagination(self, db, make_portfolio, record, event_store):
        portfolio = make_portfolio()
        record(portfolio, "DEPOSIT", date(2024, 1, 1), "5000")
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
        record(portfolio, "BUY", date(2024, 2, 2), "5", "MSFT", "300")
        record(portfolio, "BUY", date(2024, 3, 2), "5", "AAPL", "110")

        aapl, total = event_store.list_transactions(db, portfolio.id, symbol="aapl")
        assert total == 2
        assert all(tx.symbol == "AAPL" for tx in aapl)

        window, total = event_store.list_transactions(
            db, portfolio.id, start_date=date(2024, 1, 2), end_date=date(2024, 2, 28)
        )
        assert total == 2

        deposits, total = event_store.list_transactions(db, portfolio.id, transaction_type=TransactionType.DEPOSIT)
        assert total == 1

        page, total = event_store.list_transactions(db, portfolio.id, skip=1, limit=2)
        assert total == 4
        assert len(page) == 2
        assert page[0].date == date(2024, 1, 2)

    def test_open_lots_as_of_replays_prefix(self, db, make_portfolio, record):
        portfolio = make_portfolio()
        record(portfolio, "BUY", date(2024, 1, 2), "10", "AAPL", "100")
        record(portfolio, "SELL", date(2024, 3, 1), "4", "AAPL", "110")

        assert open_lots_as_of(db, portfolio, date(2024, 2, 1)).open_quantity("AAPL") == Decimal("10")
        assert open_lots_as_of(db, portfolio, date(2024, 3, 1)).open_quantity("AAPL") == Decimal("6")
