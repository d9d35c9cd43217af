# backend/modules/settings/models/settings_models.py

from sqlalchemy import Column, Integer, String

from core.database import Base
from core.mixins import TimestampMixin


class RestaurantSetting(Base, TimestampMixin):
    """Key/value runtime settings editable from the admin terminal"""
    __tablename__ = "restaurant_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), nullable=False, unique=True, index=True)
    value = Column(String(500), nullable=False)

    def __repr__(self):
        return f"<RestaurantSetting(key='{self.key}', value='{self.value}')>"
