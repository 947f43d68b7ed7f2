"""Initial schema baseline

This migration creates the complete database schema for TradeClarity.

Tables:
    - users: Local mirror of auth-service users
    - exchange_connections: Exchange / brokerage links per user
    - csv_uploads: Uploaded CSV file metadata
    - trades: Canonical trades from every source
    - portfolio_snapshots: Point-in-time holdings per connection
    - user_analytics_cache: Per-user analytics cache
    - currency_exchange_rates: Daily USD rates written by the rates job
    - snaptrade_users: Aggregator registrations with encrypted secrets

Revision ID: 001
Revises: None
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # USERS
    # ==========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(), nullable=True, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # EXCHANGE CONNECTIONS
    # ==========================================================================
    op.create_table(
        'exchange_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('exchange', sa.String(), nullable=False, index=True),
        sa.Column('label', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('api_key_encrypted', sa.Text(), nullable=True),
        sa.Column('api_secret_encrypted', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # CSV UPLOADS
    # ==========================================================================
    op.create_table(
        'csv_uploads',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('label', sa.String(), nullable=True),
        sa.Column('account_type', sa.String(16), nullable=False),
        sa.Column(
            'exchange_connection_id',
            sa.String(36),
            sa.ForeignKey('exchange_connections.id', ondelete='SET NULL'),
            nullable=True,
            index=True,
        ),
        sa.Column('exchange', sa.String(), nullable=True),
        sa.Column('size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('trades_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False, index=True),
    )

    # ==========================================================================
    # TRADES
    # ==========================================================================
    op.create_table(
        'trades',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('exchange', sa.String(), nullable=False, index=True),
        sa.Column(
            'exchange_connection_id',
            sa.String(36),
            sa.ForeignKey('exchange_connections.id', ondelete='CASCADE'),
            nullable=True,
            index=True,
        ),
        sa.Column(
            'csv_upload_id',
            sa.String(36),
            sa.ForeignKey('csv_uploads.id', ondelete='CASCADE'),
            nullable=True,
            index=True,
        ),
        sa.Column('symbol', sa.String(), nullable=False),
        sa.Column('side', sa.String(8), nullable=False),
        sa.Column('type', sa.String(32), nullable=True),
        sa.Column('account_type', sa.String(16), nullable=False, server_default='SPOT'),
        sa.Column('is_futures', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('quantity', sa.Numeric(28, 10), nullable=False, server_default='0'),
        sa.Column('price', sa.Numeric(28, 10), nullable=False, server_default='0'),
        sa.Column('quote_quantity', sa.Numeric(28, 10), nullable=False, server_default='0'),
        sa.Column('commission', sa.Numeric(28, 10), nullable=False, server_default='0'),
        sa.Column('commission_asset', sa.String(16), nullable=True),
        sa.Column('timestamp', sa.BigInteger(), nullable=True),
        sa.Column('trade_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('trade_id', sa.String(), nullable=False),
        sa.Column('order_id', sa.String(), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id', 'exchange', 'trade_id', name='uq_trade_user_exchange_trade_id'),
    )
    op.create_index('ix_trades_user_trade_time', 'trades', ['user_id', 'trade_time'])

    # ==========================================================================
    # PORTFOLIO SNAPSHOTS
    # ==========================================================================
    op.create_table(
        'portfolio_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column(
            'connection_id',
            sa.String(36),
            sa.ForeignKey('exchange_connections.id', ondelete='CASCADE'),
            nullable=True,
            index=True,
        ),
        sa.Column('exchange', sa.String(), nullable=False),
        sa.Column('holdings', sa.JSON(), nullable=False),
        sa.Column('total_portfolio_value', sa.Numeric(28, 10), nullable=False, server_default='0'),
        sa.Column('total_spot_value', sa.Numeric(28, 10), nullable=False, server_default='0'),
        sa.Column('total_futures_value', sa.Numeric(28, 10), nullable=False, server_default='0'),
        sa.Column('primary_currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('account_type', sa.String(16), nullable=True),
        sa.Column('snapshot_time', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_portfolio_snapshots_user_connection_time',
        'portfolio_snapshots',
        ['user_id', 'connection_id', 'snapshot_time'],
    )

    # ==========================================================================
    # ANALYTICS CACHE
    # ==========================================================================
    op.create_table(
        'user_analytics_cache',
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('analytics_data', sa.JSON(), nullable=False),
        sa.Column('ai_context', sa.JSON(), nullable=False),
        sa.Column('total_trades', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_trade_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trades_hash', sa.String(64), nullable=False),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # CURRENCY EXCHANGE RATES
    # ==========================================================================
    op.create_table(
        'currency_exchange_rates',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('currency_code', sa.String(3), nullable=False),
        sa.Column('rate', sa.Numeric(20, 6), nullable=False),
        sa.Column('rate_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('currency_code', 'rate_date', name='uq_currency_rate_date'),
    )
    op.create_index('ix_currency_rates_code_date', 'currency_exchange_rates', ['currency_code', 'rate_date'])

    # ==========================================================================
    # SNAPTRADE USERS
    # ==========================================================================
    op.create_table(
        'snaptrade_users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('snaptrade_user_id', sa.String(), nullable=False, unique=True),
        sa.Column('user_secret_encrypted', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('snaptrade_users')
    op.drop_index('ix_currency_rates_code_date', table_name='currency_exchange_rates')
    op.drop_table('currency_exchange_rates')
    op.drop_table('user_analytics_cache')
    op.drop_index('ix_portfolio_snapshots_user_connection_time', table_name='portfolio_snapshots')
    op.drop_table('portfolio_snapshots')
    op.drop_index('ix_trades_user_trade_time', table_name='trades')
    op.drop_table('trades')
    op.drop_table('csv_uploads')
    op.drop_table('exchange_connections')
    op.drop_table('users')
