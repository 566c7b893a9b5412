"""Initial schema

This migration creates the complete database schema for the Portfolio Tracker.

Tables:
    - portfolios: Portfolios owned by authenticated principals
    - import_batches: One row per committed bulk or CSV import
    - transactions: The append-only event log of each portfolio
    - tax_lots: Open acquisition units (derived)
    - holdings: Per-symbol aggregates of open lots (derived)
    - realized_gains: One lot's share of a sale (never mutated)
    - corporate_actions: Global splits, dividends, mergers and ticker changes
    - portfolio_actions: Per-portfolio review of a corporate action
    - performance_snapshots: Daily valuation per portfolio

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


AMOUNT = sa.Numeric(28, 10)

transaction_type = sa.Enum('BUY', 'SELL', 'DIVIDEND', 'DEPOSIT', 'WITHDRAWAL', 'FEE', name='transactiontype')
cost_basis_method = sa.Enum('FIFO', 'LIFO', 'SPECIFIC_LOT', name='costbasismethod')
corporate_action_type = sa.Enum('SPLIT', 'DIVIDEND', 'MERGER', 'TICKER_CHANGE', 'SPINOFF', name='corporateactiontype')
action_status = sa.Enum('PENDING', 'APPROVED', 'REJECTED', 'APPLIED', name='actionstatus')


def upgrade() -> None:
    # ==========================================================================
    # PORTFOLIOS
    # ==========================================================================
    op.create_table(
        'portfolios',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('owner_id', sa.String(36), nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('base_currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('cost_basis_method', cost_basis_method, nullable=False, server_default='FIFO'),
        sa.Column('ledger_stale', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # IMPORT BATCHES
    # ==========================================================================
    op.create_table(
        'import_batches',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id'), nullable=False, index=True),
        sa.Column('source', sa.String(50), nullable=False, server_default='bulk'),
        sa.Column('filename', sa.String(255), nullable=True),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # TRANSACTIONS
    # ==========================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id'), nullable=False, index=True),
        sa.Column('transaction_type', transaction_type, nullable=False),
        sa.Column('symbol', sa.String(20), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('quantity', AMOUNT, nullable=False),
        sa.Column('price', AMOUNT, nullable=True),
        sa.Column('commission', AMOUNT, nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('lot_selection', sa.JSON(), nullable=True),
        sa.Column('import_batch_id', sa.Integer(), sa.ForeignKey('import_batches.id'), nullable=True, index=True),
        sa.Column('portfolio_action_id', sa.Integer(), nullable=True, index=True),
    )
    op.create_index(
        'ix_transaction_portfolio_order', 'transactions', ['portfolio_id', 'date', 'created_at', 'id']
    )
    op.create_index('ix_transaction_portfolio_symbol', 'transactions', ['portfolio_id', 'symbol'])

    # ==========================================================================
    # TAX LOTS
    # ==========================================================================
    op.create_table(
        'tax_lots',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id'), nullable=False, index=True),
        sa.Column('symbol', sa.String(20), nullable=False),
        sa.Column('purchase_date', sa.Date(), nullable=False),
        sa.Column('quantity', AMOUNT, nullable=False),
        sa.Column('cost_basis', AMOUNT, nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('source_transaction_id', sa.Integer(), nullable=False, index=True),
        sa.Column('source_action_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_tax_lot_portfolio_symbol', 'tax_lots', ['portfolio_id', 'symbol', 'purchase_date'])

    # ==========================================================================
    # HOLDINGS
    # ==========================================================================
    op.create_table(
        'holdings',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id'), nullable=False, index=True),
        sa.Column('symbol', sa.String(20), nullable=False),
        sa.Column('quantity', AMOUNT, nullable=False),
        sa.Column('total_cost_basis', AMOUNT, nullable=False),
        sa.Column('avg_cost_price', AMOUNT, nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('portfolio_id', 'symbol', name='uq_holding_portfolio_symbol'),
    )

    # ==========================================================================
    # REALIZED GAINS
    # ==========================================================================
    op.create_table(
        'realized_gains',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id'), nullable=False, index=True),
        sa.Column('sale_transaction_id', sa.Integer(), nullable=False, index=True),
        sa.Column('lot_id', sa.Integer(), nullable=True),
        sa.Column('source_transaction_id', sa.Integer(), nullable=False),
        sa.Column('source_action_id', sa.Integer(), nullable=True),
        sa.Column('symbol', sa.String(20), nullable=False),
        sa.Column('purchase_date', sa.Date(), nullable=False),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('quantity', AMOUNT, nullable=False),
        sa.Column('cost_basis', AMOUNT, nullable=False),
        sa.Column('proceeds', AMOUNT, nullable=False),
        sa.Column('gain', AMOUNT, nullable=False),
        sa.Column('is_long_term', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_realized_gain_portfolio_sale_date', 'realized_gains', ['portfolio_id', 'sale_date'])

    # ==========================================================================
    # CORPORATE ACTIONS
    # ==========================================================================
    op.create_table(
        'corporate_actions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('symbol', sa.String(20), nullable=False, index=True),
        sa.Column('action_type', corporate_action_type, nullable=False),
        sa.Column('action_date', sa.Date(), nullable=False, index=True),
        sa.Column('ratio', AMOUNT, nullable=True),
        sa.Column('amount', AMOUNT, nullable=True),
        sa.Column('new_symbol', sa.String(20), nullable=True),
        sa.Column('cost_allocation', AMOUNT, nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('symbol', 'action_type', 'action_date', name='uq_corporate_action_symbol_type_date'),
    )

    op.create_table(
        'portfolio_actions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id'), nullable=False, index=True),
        sa.Column(
            'corporate_action_id', sa.Integer(), sa.ForeignKey('corporate_actions.id'), nullable=False, index=True
        ),
        sa.Column('status', action_status, nullable=False, server_default='PENDING'),
        sa.Column('affected_symbol', sa.String(20), nullable=False),
        sa.Column('shares_affected', AMOUNT, nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewer_id', sa.String(36), nullable=True),
        sa.Column('notes', sa.String(1000), nullable=True),
        sa.Column('apply_error', sa.String(1000), nullable=True),
        sa.UniqueConstraint('portfolio_id', 'corporate_action_id', name='uq_portfolio_action_pair'),
    )
    op.create_index('ix_portfolio_action_status', 'portfolio_actions', ['portfolio_id', 'status'])

    # ==========================================================================
    # PERFORMANCE SNAPSHOTS
    # ==========================================================================
    op.create_table(
        'performance_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('portfolio_id', sa.Integer(), sa.ForeignKey('portfolios.id'), nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('total_value', AMOUNT, nullable=False),
        sa.Column('total_cost_basis', AMOUNT, nullable=False),
        sa.Column('total_return', AMOUNT, nullable=False),
        sa.Column('total_return_pct', AMOUNT, nullable=True),
        sa.Column('cash_flow_of_day', AMOUNT, nullable=False, server_default='0'),
        sa.Column('day_change', AMOUNT, nullable=True),
        sa.Column('day_change_pct', AMOUNT, nullable=True),
        sa.Column('priced_at_cost', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('portfolio_id', 'date', name='uq_snapshot_portfolio_date'),
    )


def downgrade() -> None:
    op.drop_table('performance_snapshots')
    op.drop_index('ix_portfolio_action_status', table_name='portfolio_actions')
    op.drop_table('portfolio_actions')
    op.drop_table('corporate_actions')
    op.drop_index('ix_realized_gain_portfolio_sale_date', table_name='realized_gains')
    op.drop_table('realized_gains')
    op.drop_table('holdings')
    op.drop_index('ix_tax_lot_portfolio_symbol', table_name='tax_lots')
    op.drop_table('tax_lots')
    op.drop_index('ix_transaction_portfolio_symbol', table_name='transactions')
    op.drop_index('ix_transaction_portfolio_order', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('import_batches')
    op.drop_table('portfolios')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS actionstatus')
    op.execute('DROP TYPE IF EXISTS corporateactiontype')
    op.execute('DROP TYPE IF EXISTS costbasismethod')
    op.execute('DROP TYPE IF EXISTS transactiontype')
