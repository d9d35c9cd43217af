from sqlalchemy import (Column, Integer, String, ForeignKey, DateTime,
                        Text, Boolean)
from sqlalchemy.orm import relationship

from core.database import Base
from core.mixins import TimestampMixin, ArchivableMixin
from ..enums.order_enums import OrderStatus, OrderPaymentStatus


class Order(Base, TimestampMixin, ArchivableMixin):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), nullable=False, unique=True, index=True)
    order_type = Column(String(20), nullable=False, index=True)
    # String so non-numeric table identifiers stay representable
    table_id = Column(String(20), nullable=True, index=True)
    customer_name = Column(String(200), nullable=False)
    customer_phone = Column(String(50), nullable=False, index=True)
    delivery_address = Column(Text, nullable=True)
    delivery_notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, index=True,
                    default=OrderStatus.PENDING.value)

    # Money is stored in minor units
    subtotal = Column(Integer, nullable=False, default=0)
    delivery_fee = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)

    payment_status = Column(String(20), nullable=False,
                            default=OrderPaymentStatus.UNPAID.value)
    payment_method = Column(String(20), nullable=True)
    ledger_transaction_id = Column(Integer, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    # Client-generated key; a replayed submission returns the original order
    idempotency_key = Column(String(100), nullable=True, unique=True)
    version = Column(Integer, nullable=False, default=1)

    order_items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan",
        order_by="OrderItem.id"
    )

    __mapper_args__ = {"version_id_col": version}
    # Ids of deleted orders are never reused; orphaned ledger rows keep them
    __table_args__ = {"sqlite_autoincrement": True}

    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID.value

    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """Line item snapshot taken when the order was submitted"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"),
                      nullable=False, index=True)
    menu_item_id = Column(Integer, nullable=True)
    name = Column(String(200), nullable=False)
    unit_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Integer, nullable=False)
    is_custom = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="order_items")
