# portfolio_tracker/models.py
import datetime as dt
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums help enforce data integrity at the database level
class TransactionType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    FEE = "FEE"


# Types that open or consume tax lots
LOT_TRANSACTION_TYPES = frozenset({TransactionType.BUY, TransactionType.SELL})

# Types that carry no symbol
CASH_TRANSACTION_TYPES = frozenset({TransactionType.DEPOSIT, TransactionType.WITHDRAWAL, TransactionType.FEE})


class CostBasisMethod(str, enum.Enum):
    FIFO = "FIFO"
    LIFO = "LIFO"
    SPECIFIC_LOT = "SPECIFIC_LOT"


class CorporateActionType(str, enum.Enum):
    SPLIT = "SPLIT"
    DIVIDEND = "DIVIDEND"
    MERGER = "MERGER"
    TICKER_CHANGE = "TICKER_CHANGE"  # Merger with ratio 1
    SPINOFF = "SPINOFF"


class ActionStatus(str, enum.Enum):
    """
    Review status of a corporate action for one portfolio.

    State transitions:
        PENDING → APPROVED → APPLIED
        PENDING → REJECTED (terminal)
        APPROVED → APPLIED (retry after a failed application)
    """
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    APPLIED = "APPLIED"


class Portfolio(Base):
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    # Authenticated principal (UUID string from the bearer token)
    owner_id: Mapped[str] = mapped_column(String(36), index=True)
    name: Mapped[str] = mapped_column(String(100))
    base_currency: Mapped[str] = mapped_column(String(3), default="USD")
    cost_basis_method: Mapped[CostBasisMethod] = mapped_column(Enum(CostBasisMethod), default=CostBasisMethod.FIFO)
    # Set when the event log changed and lots/holdings have not been re-derived yet
    ledger_stale: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    transactions: Mapped[list["Transaction"]] = relationship(back_populates="portfolio", cascade="all, delete-orphan")
    tax_lots: Mapped[list["TaxLot"]] = relationship(back_populates="portfolio", cascade="all, delete-orphan")
    holdings: Mapped[list["Holding"]] = relationship(back_populates="portfolio", cascade="all, delete-orphan")
    realized_gains: Mapped[list["RealizedGain"]] = relationship(cascade="all, delete-orphan")
    actions: Mapped[list["PortfolioAction"]] = relationship(back_populates="portfolio", cascade="all, delete-orphan")
    snapshots: Mapped[list["PerformanceSnapshot"]] = relationship(cascade="all, delete-orphan")
    import_batches: Mapped[list["ImportBatch"]] = relationship(cascade="all, delete-orphan")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        # Event order: (date, created_at, id)
        Index("ix_transaction_portfolio_order", "portfolio_id", "date", "created_at", "id"),
        Index("ix_transaction_portfolio_symbol", "portfolio_id", "symbol"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    transaction_type: Mapped[TransactionType] = mapped_column(Enum(TransactionType))
    symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)  # NULL for cash operations
    date: Mapped[dt.date] = mapped_column(Date)  # dt.date: the attribute shadows `date` in the class body
    # Monotonic per portfolio, breaks same-day ties
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # For cash operations with no price, quantity is the cash amount
    quantity: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    price: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    commission: Mapped[Decimal] = mapped_column(Numeric(28, 10), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # SPECIFIC_LOT sells: [{"source_transaction_id": int, "quantity": str}]
    lot_selection: Mapped[list | None] = mapped_column(JSON, nullable=True)

    import_batch_id: Mapped[int | None] = mapped_column(ForeignKey("import_batches.id"), nullable=True, index=True)
    # Synthetic dividends emitted by a corporate action
    portfolio_action_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="transactions")

    @property
    def gross_amount(self) -> Decimal:
        """Cash value of the event before commission."""
        if self.price is None:
            return self.quantity
        return self.quantity * self.price


class TaxLot(Base):
    """
    One acquisition unit of a symbol.

    cost_basis = quantity × purchase price + commission at purchase.
    Splits and mergers mutate quantity (and symbol) but keep cost_basis
    and purchase_date. source_transaction_id is a weak back-reference to
    the BUY that opened the lot and is stable across replays. A lot derived
    by a spinoff shares its parent's source_transaction_id and carries the
    deriving PortfolioAction in source_action_id.
    """
    __tablename__ = "tax_lots"
    __table_args__ = (
        Index("ix_tax_lot_portfolio_symbol", "portfolio_id", "symbol", "purchase_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    symbol: Mapped[str] = mapped_column(String(20))
    purchase_date: Mapped[date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    cost_basis: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    source_transaction_id: Mapped[int] = mapped_column(Integer, index=True)
    source_action_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="tax_lots")


class Holding(Base):
    """Derived per-symbol aggregate of open tax lots."""
    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol", name="uq_holding_portfolio_symbol"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    symbol: Mapped[str] = mapped_column(String(20))
    quantity: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    total_cost_basis: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    avg_cost_price: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="holdings")


class RealizedGain(Base):
    """
    One lot's share of a sale. Never mutated.

    sale_transaction_id and lot_id are weak references: rows survive the
    deletion of their sale for audit.
    """
    __tablename__ = "realized_gains"
    __table_args__ = (
        Index("ix_realized_gain_portfolio_sale_date", "portfolio_id", "sale_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    sale_transaction_id: Mapped[int] = mapped_column(Integer, index=True)
    lot_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source_transaction_id: Mapped[int] = mapped_column(Integer)
    source_action_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    symbol: Mapped[str] = mapped_column(String(20))
    purchase_date: Mapped[date] = mapped_column(Date)
    sale_date: Mapped[date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    cost_basis: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    proceeds: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    gain: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    is_long_term: Mapped[bool] = mapped_column(Boolean)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class CorporateAction(Base):
    """Global reference data. Immutable once registered."""
    __tablename__ = "corporate_actions"
    __table_args__ = (
        UniqueConstraint("symbol", "action_type", "action_date", name="uq_corporate_action_symbol_type_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(20), index=True)
    action_type: Mapped[CorporateActionType] = mapped_column(Enum(CorporateActionType))
    action_date: Mapped[date] = mapped_column(Date, index=True)
    ratio: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)  # SPLIT, MERGER, SPINOFF
    amount: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)  # DIVIDEND per share
    new_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)  # MERGER, TICKER_CHANGE, SPINOFF
    # SPINOFF: fraction of the parent cost basis moved to the new symbol
    cost_allocation: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PortfolioAction(Base):
    __tablename__ = "portfolio_actions"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "corporate_action_id", name="uq_portfolio_action_pair"),
        Index("ix_portfolio_action_status", "portfolio_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    corporate_action_id: Mapped[int] = mapped_column(ForeignKey("corporate_actions.id"), index=True)
    status: Mapped[ActionStatus] = mapped_column(Enum(ActionStatus), default=ActionStatus.PENDING)
    affected_symbol: Mapped[str] = mapped_column(String(20))
    shares_affected: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewer_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    # Last application failure; cleared on success
    apply_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="actions")
    corporate_action: Mapped["CorporateAction"] = relationship()


class PerformanceSnapshot(Base):
    __tablename__ = "performance_snapshots"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "date", name="uq_snapshot_portfolio_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    date: Mapped[dt.date] = mapped_column(Date)  # dt.date: the attribute shadows `date` in the class body
    total_value: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    total_cost_basis: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    total_return: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    total_return_pct: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    cash_flow_of_day: Mapped[Decimal] = mapped_column(Numeric(28, 10), default=Decimal("0"))
    day_change: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    day_change_pct: Mapped[Decimal | None] = mapped_column(Numeric(28, 10), nullable=True)
    # Positions valued at cost because no price was available
    priced_at_cost: Mapped[list | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ImportBatch(Base):
    __tablename__ = "import_batches"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    source: Mapped[str] = mapped_column(String(50), default="bulk")  # "bulk", "csv"
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
