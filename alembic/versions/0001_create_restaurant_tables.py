"""Create restaurant coordination tables

Revision ID: 0001_restaurant_tables
Revises:
Create Date: 2025-02-10

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_restaurant_tables'
down_revision = None
branch_labels = None
depends_on = None

TRANSACTION_TYPES = (
    'opening_balance', 'closing_balance', 'cash_payment', 'card_payment',
    'online_payment', 'expense', 'cash_handover',
)
PAYMENT_TYPE_FILTER = (
    "transaction_type IN ('cash_payment', 'card_payment', 'online_payment')"
)


def timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table('menu_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_menu_items_id', 'menu_items', ['id'])
    op.create_index('ix_menu_items_name', 'menu_items', ['name'])

    op.create_table('restaurant_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.String(length=500), nullable=False),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_restaurant_settings_id', 'restaurant_settings', ['id'])
    op.create_index('ix_restaurant_settings_key', 'restaurant_settings', ['key'], unique=True)

    op.create_table('restaurant_tables',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_id', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('customer_name', sa.String(length=200), nullable=True),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),
        sa.Column('session_start', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_restaurant_tables_id', 'restaurant_tables', ['id'])
    op.create_index('ix_restaurant_tables_table_id', 'restaurant_tables', ['table_id'], unique=True)

    op.create_table('table_session_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_id', sa.String(length=20), nullable=False),
        sa.Column('customer_name', sa.String(length=200), nullable=True),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),
        sa.Column('session_start', sa.DateTime(), nullable=True),
        sa.Column('session_end', sa.DateTime(), nullable=False),
        sa.Column('order_count', sa.Integer(), nullable=False),
        sa.Column('total', sa.Integer(), nullable=False),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_table_session_history_id', 'table_session_history', ['id'])
    op.create_index('ix_table_session_history_table_id', 'table_session_history', ['table_id'])

    op.create_table('table_carts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_id', sa.String(length=20), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('last_write', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_table_carts_id', 'table_carts', ['id'])
    op.create_index('ix_table_carts_table_id', 'table_carts', ['table_id'], unique=True)

    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=40), nullable=False),
        sa.Column('order_type', sa.String(length=20), nullable=False),
        sa.Column('table_id', sa.String(length=20), nullable=True),
        sa.Column('customer_name', sa.String(length=200), nullable=False),
        sa.Column('customer_phone', sa.String(length=50), nullable=False),
        sa.Column('delivery_address', sa.Text(), nullable=True),
        sa.Column('delivery_notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('subtotal', sa.Integer(), nullable=False),
        sa.Column('delivery_fee', sa.Integer(), nullable=False),
        sa.Column('total', sa.Integer(), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=True),
        sa.Column('ledger_transaction_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('archived_at', sa.DateTime(), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_order_type', 'orders', ['order_type'])
    op.create_index('ix_orders_table_id', 'orders', ['table_id'])
    op.create_index('ix_orders_customer_phone', 'orders', ['customer_phone'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_archived_at', 'orders', ['archived_at'])

    op.create_table('order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('menu_item_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('line_total', sa.Integer(), nullable=False),
        sa.Column('is_custom', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_id', 'order_items', ['id'])
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table('payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('amount_received', sa.Integer(), nullable=True),
        sa.Column('change_given', sa.Integer(), nullable=True),
        sa.Column('reference_number', sa.String(length=100), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'])
    op.create_index('ix_payments_order_id', 'payments', ['order_id'], unique=True)

    op.create_table('daybook_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=30), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "transaction_type IN ({})".format(", ".join(f"'{t}'" for t in TRANSACTION_TYPES)),
            name='ck_daybook_transaction_type',
        ),
        sa.CheckConstraint('amount >= 0', name='ck_daybook_amount_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index('ix_daybook_transactions_id', 'daybook_transactions', ['id'])
    op.create_index('ix_daybook_transactions_transaction_type', 'daybook_transactions', ['transaction_type'])
    op.create_index('ix_daybook_transactions_order_id', 'daybook_transactions', ['order_id'])
    op.create_index('ix_daybook_transactions_business_date', 'daybook_transactions', ['business_date'])
    op.create_index('ix_daybook_transactions_created_at', 'daybook_transactions', ['created_at'])
    # At most one payment entry per order
    op.create_index(
        'uq_daybook_payment_order',
        'daybook_transactions',
        ['order_id'],
        unique=True,
        sqlite_where=sa.text(PAYMENT_TYPE_FILTER),
        postgresql_where=sa.text(PAYMENT_TYPE_FILTER),
    )


def downgrade():
    op.drop_table('daybook_transactions')
    op.drop_table('payments')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('table_carts')
    op.drop_table('table_session_history')
    op.drop_table('restaurant_tables')
    op.drop_table('restaurant_settings')
    op.drop_table('menu_items')
