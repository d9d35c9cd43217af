# backend/modules/menu/models/menu_models.py

from sqlalchemy import Column, Integer, String, Boolean

from core.database import Base
from core.mixins import TimestampMixin


class MenuItem(Base, TimestampMixin):
    """Current price list used to recompute order totals"""
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    category = Column(String(100), nullable=True)
    price = Column(Integer, nullable=False)  # minor units
    is_available = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<MenuItem(id={self.id}, name='{self.name}')>"
