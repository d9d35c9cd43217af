from datetime import date, datetime
from typing import List

from pydantic import BaseModel, ConfigDict

from core.money import MinorUnits


class DailyFiguresOut(BaseModel):
    business_date: date
    order_count: int
    revenue: MinorUnits

    model_config = ConfigDict(from_attributes=True)


class TopItemOut(BaseModel):
    name: str
    quantity: int

    model_config = ConfigDict(from_attributes=True)


class AnalyticsOut(BaseModel):
    business_date: date
    total_orders: int
    completed_orders: int
    cancelled_orders: int
    completion_rate: int
    total_revenue: MinorUnits
    average_order_value: MinorUnits
    total_customers: int
    today_orders: int
    today_revenue: MinorUnits
    dine_in_orders: int
    delivery_orders: int
    last_7_days: List[DailyFiguresOut] = []
    top_items: List[TopItemOut] = []

    model_config = ConfigDict(from_attributes=True)


class CustomerOut(BaseModel):
    phone: str
    name: str
    order_count: int
    total_spent: MinorUnits
    average_order_value: MinorUnits
    first_order_at: datetime
    last_order_at: datetime

    model_config = ConfigDict(from_attributes=True)
