# backend/modules/analytics/services/analytics_service.py

"""
Read-only sales figures and the customer directory, derived from orders.

Cancelled orders count towards order totals and the completion rate but
never towards revenue. Deleted orders are gone from every figure.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import case, desc, func
from sqlalchemy.orm import Session

from core.clock import business_date_for, business_day_start, business_today
from modules.orders.enums.order_enums import OrderStatus, OrderType
from modules.orders.models.order_models import Order, OrderItem

logger = logging.getLogger(__name__)

TREND_DAYS = 7
TOP_ITEM_LIMIT = 5

_billable = Order.status != OrderStatus.CANCELLED.value


@dataclass
class DailyFigures:
    business_date: date
    order_count: int = 0
    revenue: int = 0


@dataclass
class TopItem:
    name: str
    quantity: int


@dataclass
class AnalyticsSummary:
    business_date: date
    total_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0
    total_revenue: int = 0
    average_order_value: int = 0
    total_customers: int = 0
    today_orders: int = 0
    today_revenue: int = 0
    dine_in_orders: int = 0
    delivery_orders: int = 0
    last_7_days: List[DailyFigures] = field(default_factory=list)
    top_items: List[TopItem] = field(default_factory=list)

    @property
    def completion_rate(self) -> int:
        """Completed share of all orders as a whole percentage, rounded half up."""
        if not self.total_orders:
            return 0
        return (self.completed_orders * 200 + self.total_orders) // (2 * self.total_orders)


@dataclass
class CustomerSummary:
    phone: str
    name: str
    order_count: int
    total_spent: int
    average_order_value: int
    first_order_at: datetime
    last_order_at: datetime


def _average(total: int, count: int) -> int:
    return (total * 2 + count) // (2 * count) if count else 0


def _daily_figures(db: Session, today: date) -> List[DailyFigures]:
    """Per business day for the trailing week, newest first, empty days included."""
    days = [today - timedelta(days=offset) for offset in range(TREND_DAYS)]
    figures = {day: DailyFigures(business_date=day) for day in days}
    window_start = business_day_start(today - timedelta(days=TREND_DAYS - 1))
    window_end = business_day_start(today + timedelta(days=1))

    rows = (
        db.query(Order.created_at, Order.total, Order.status)
        .filter(Order.created_at >= window_start, Order.created_at < window_end)
        .all()
    )
    for created_at, total, status in rows:
        day = figures.get(business_date_for(created_at))
        if day is None:
            continue
        day.order_count += 1
        if status != OrderStatus.CANCELLED.value:
            day.revenue += total
    return [figures[day] for day in days]


def _top_items(db: Session, limit: int) -> List[TopItem]:
    quantity = func.sum(OrderItem.quantity).label("quantity")
    rows = (
        db.query(OrderItem.name, quantity)
        .join(Order, OrderItem.order_id == Order.id)
        .filter(_billable)
        .group_by(OrderItem.name)
        .order_by(desc(quantity), OrderItem.name)
        .limit(limit)
        .all()
    )
    return [TopItem(name=name, quantity=int(qty)) for name, qty in rows]


async def get_analytics(db: Session, today: Optional[date] = None) -> AnalyticsSummary:
    today = today or business_today()
    summary = AnalyticsSummary(business_date=today)

    for status, count in db.query(Order.status, func.count(Order.id)).group_by(Order.status):
        summary.total_orders += count
        if status == OrderStatus.COMPLETED.value:
            summary.completed_orders = count
        elif status == OrderStatus.CANCELLED.value:
            summary.cancelled_orders = count

    for order_type, count in db.query(Order.order_type, func.count(Order.id)).group_by(
        Order.order_type
    ):
        if order_type == OrderType.DINE_IN.value:
            summary.dine_in_orders = count
        elif order_type == OrderType.DELIVERY.value:
            summary.delivery_orders = count

    billable_count, revenue = db.query(
        func.count(Order.id), func.coalesce(func.sum(Order.total), 0)
    ).filter(_billable).one()
    summary.total_revenue = int(revenue)
    summary.average_order_value = _average(summary.total_revenue, billable_count)
    summary.total_customers = (
        db.query(func.count(func.distinct(Order.customer_phone))).scalar() or 0
    )

    summary.last_7_days = _daily_figures(db, today)
    summary.today_orders = summary.last_7_days[0].order_count
    summary.today_revenue = summary.last_7_days[0].revenue
    summary.top_items = _top_items(db, TOP_ITEM_LIMIT)

    logger.debug(
        f"Analytics for {today}: {summary.total_orders} orders, "
        f"revenue {summary.total_revenue}"
    )
    return summary


async def list_customers(db: Session, limit: int = 100) -> List[CustomerSummary]:
    """Customers keyed by phone number, biggest spenders first."""
    spent = func.coalesce(func.sum(case((_billable, Order.total), else_=0)), 0)
    billable_orders = func.coalesce(func.sum(case((_billable, 1), else_=0)), 0)
    last_order = func.max(Order.created_at)
    rows = (
        db.query(
            Order.customer_phone,
            func.count(Order.id),
            spent.label("total_spent"),
            billable_orders,
            func.min(Order.created_at),
            last_order.label("last_order_at"),
        )
        .group_by(Order.customer_phone)
        .order_by(desc("total_spent"), desc("last_order_at"), Order.customer_phone)
        .limit(limit)
        .all()
    )
    if not rows:
        return []

    # The name on the newest order wins when a customer changes it
    names = {}
    for phone, name in (
        db.query(Order.customer_phone, Order.customer_name)
        .filter(Order.customer_phone.in_([row[0] for row in rows]))
        .order_by(Order.id)
    ):
        names[phone] = name

    return [
        CustomerSummary(
            phone=phone,
            name=names.get(phone, ""),
            order_count=order_count,
            total_spent=int(total_spent),
            average_order_value=_average(int(total_spent), int(billable)),
            first_order_at=first_order_at,
            last_order_at=last_order_at,
        )
        for phone, order_count, total_spent, billable, first_order_at, last_order_at in rows
    ]
