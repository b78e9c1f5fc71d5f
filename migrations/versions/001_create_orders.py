"""
Alembic migration: Create orders table.

Creates the orders table holding the customer and item snapshots, the JSONB
documents for totals, address, tracking, payment and audit trail, and the
fulfillment status. Adds the indexes used by the order listings and a unique
expression index on the payment reference so that one gateway payment can
never produce two orders.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the orders table, its indexes and constraints."""
    op.create_table(
        'orders',
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            nullable=False,
            comment='Unique identifier for the record',
        ),
        sa.Column(
            'order_no',
            sa.String(length=32),
            nullable=False,
            comment='Human-readable order number',
        ),
        sa.Column(
            'user_id',
            sa.String(length=64),
            nullable=False,
            comment='Customer identifier from the auth platform',
        ),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column(
            'items',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment='Line item snapshot',
        ),
        sa.Column(
            'totals',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment='Order totals in major currency units',
        ),
        sa.Column(
            'shipping_address',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
        ),
        sa.Column('shipping_method', sa.String(length=255), nullable=False),
        sa.Column(
            'tracking',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            'payment',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment='Payment sub-state and gateway reference',
        ),
        sa.Column(
            'status',
            sa.String(length=32),
            nullable=False,
            server_default='pending_payment',
            comment='Fulfillment status',
        ),
        sa.Column(
            'audit_log',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment='Append-only audit trail',
        ),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.UniqueConstraint('order_no', name='uq_orders_order_no'),
        sa.CheckConstraint(
            "status IN ('pending_payment', 'processing', 'shipped', "
            "'delivered', 'cancelled')",
            name='ck_orders_status_valid',
        ),
        sa.CheckConstraint(
            'updated_at >= created_at',
            name='ck_orders_updated_after_created',
        ),
        comment='Customer orders with payment state and audit trail',
    )

    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    # Webhook lookups go by payment reference, not by id
    op.execute(
        "CREATE UNIQUE INDEX ux_orders_payment_reference "
        "ON orders ((payment->>'reference')) "
        "WHERE payment->>'reference' IS NOT NULL"
    )


def downgrade() -> None:
    """Drop the orders table."""
    op.execute("DROP INDEX IF EXISTS ux_orders_payment_reference")
    op.drop_index('ix_orders_status_created', table_name='orders')
    op.drop_index('ix_orders_user_created', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')
