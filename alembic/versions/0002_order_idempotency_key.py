"""Add idempotency key to orders

Revision ID: 0002_order_idempotency_key
Revises: 0001_restaurant_tables
Create Date: 2025-03-04

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_order_idempotency_key'
down_revision = '0001_restaurant_tables'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('orders') as batch_op:
        batch_op.add_column(
            sa.Column('idempotency_key', sa.String(length=100), nullable=True)
        )
        batch_op.create_unique_constraint(
            'uq_orders_idempotency_key', ['idempotency_key']
        )


def downgrade():
    with op.batch_alter_table('orders') as batch_op:
        batch_op.drop_constraint('uq_orders_idempotency_key', type_='unique')
        batch_op.drop_column('idempotency_key')
