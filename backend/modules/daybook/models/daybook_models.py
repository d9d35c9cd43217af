# backend/modules/daybook/models/daybook_models.py

from datetime import datetime

from sqlalchemy import (Column, Integer, String, Date, DateTime, Text,
                        CheckConstraint, Index, text)

from core.database import Base
from ..enums.daybook_enums import PAYMENT_TRANSACTION_TYPES, TransactionType

_TYPE_VALUES = ", ".join(f"'{t.value}'" for t in TransactionType)
_PAYMENT_TYPE_FILTER = "transaction_type IN ({})".format(
    ", ".join(f"'{t.value}'" for t in PAYMENT_TRANSACTION_TYPES)
)


class DaybookTransaction(Base):
    """
    Append-only cash ledger entry. Amounts are positive minor units; the
    direction of money is carried by ``transaction_type``.
    """
    __tablename__ = "daybook_transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_type = Column(String(30), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    # Plain integer: rows must outlive hard-deleted orders
    order_id = Column(Integer, nullable=True, index=True)
    business_date = Column(Date, nullable=False, index=True)
    idempotency_key = Column(String(100), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        CheckConstraint(
            f"transaction_type IN ({_TYPE_VALUES})", name="ck_daybook_transaction_type"
        ),
        CheckConstraint("amount >= 0", name="ck_daybook_amount_non_negative"),
        # At most one payment entry per order
        Index(
            "uq_daybook_payment_order",
            "order_id",
            unique=True,
            sqlite_where=text(_PAYMENT_TYPE_FILTER),
            postgresql_where=text(_PAYMENT_TYPE_FILTER),
        ),
    )

    def __repr__(self):
        return (
            f"<DaybookTransaction(id={self.id}, type='{self.transaction_type}', "
            f"amount={self.amount})>"
        )
