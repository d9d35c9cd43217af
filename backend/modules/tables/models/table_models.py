# backend/modules/tables/models/table_models.py

from sqlalchemy import Column, Integer, String, DateTime, JSON

from core.database import Base
from core.mixins import TimestampMixin
from ..enums.table_enums import TableStatus


class RestaurantTable(Base, TimestampMixin):
    """A numbered table and the customer session currently bound to it"""

    __tablename__ = "restaurant_tables"

    id = Column(Integer, primary_key=True, index=True)
    table_id = Column(String(20), nullable=False, unique=True, index=True)
    status = Column(String(30), nullable=False, default=TableStatus.EMPTY.value)
    customer_name = Column(String(200), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    session_start = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<RestaurantTable(table_id='{self.table_id}', status='{self.status}')>"


class TableSessionHistory(Base, TimestampMixin):
    """One row per cleared table session"""

    __tablename__ = "table_session_history"

    id = Column(Integer, primary_key=True, index=True)
    table_id = Column(String(20), nullable=False, index=True)
    customer_name = Column(String(200), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    session_start = Column(DateTime, nullable=True)
    session_end = Column(DateTime, nullable=False)
    order_count = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)  # minor units


class TableCart(Base):
    """Shared cart for a table; expires after a period without writes"""

    __tablename__ = "table_carts"

    id = Column(Integer, primary_key=True, index=True)
    table_id = Column(String(20), nullable=False, unique=True, index=True)
    items = Column(JSON, nullable=False, default=list)
    last_write = Column(DateTime, nullable=False)
