# backend/modules/payments/models/payment_models.py

from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship

from core.database import Base
from core.mixins import TimestampMixin
from modules.orders.models.order_models import Order  # noqa: F401


class Payment(Base, TimestampMixin):
    """How an order was settled; one row per paid order"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"),
                      nullable=False, unique=True, index=True)
    method = Column(String(20), nullable=False)
    # Minor units
    amount = Column(Integer, nullable=False)
    amount_received = Column(Integer, nullable=True)
    change_given = Column(Integer, nullable=True)
    reference_number = Column(String(100), nullable=True)

    order = relationship("Order")
