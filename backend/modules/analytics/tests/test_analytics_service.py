# backend/modules/analytics/tests/test_analytics_service.py

from datetime import date, datetime
from decimal import Decimal

import pytest

from modules.analytics.services.analytics_service import get_analytics, list_customers
from modules.orders.enums.order_enums import OrderStatus, OrderType
from modules.orders.schemas.order_schemas import OrderItemCreate
from modules.tables.services.table_session_service import clear_table

TODAY = date(2024, 5, 10)


@pytest.fixture
def sales_history(db_session, place_order, advance_order):
    """
    A served dine-in order and a pending one today, plus a delivery order
    cancelled two days earlier.
    """
    async def _build():
        served = await place_order("1")
        await advance_order(served.id, OrderStatus.PREPARING, OrderStatus.READY)
        await clear_table(db_session, "1")

        waiting = await place_order(
            "2", items=[OrderItemCreate(menu_item_id=3, quantity=3)],
            name="Hari", phone="9811111111",
        )

        cancelled = await place_order(
            order_type=OrderType.DELIVERY,
            items=[OrderItemCreate(menu_item_id=2, quantity=1)],
            name="Sita S.",
        )
        await advance_order(cancelled.id, OrderStatus.CANCELLED)

        served.created_at = datetime(2024, 5, 10, 10, 0)
        waiting.created_at = datetime(2024, 5, 10, 11, 0)
        cancelled.created_at = datetime(2024, 5, 8, 9, 0)
        db_session.commit()
        return served, waiting, cancelled

    return _build


class TestAnalytics:
    @pytest.mark.asyncio
    async def test_figures_exclude_cancelled_revenue(self, db_session, sales_history):
        await sales_history()

        summary = await get_analytics(db_session, TODAY)

        assert summary.total_orders == 3
        assert summary.completed_orders == 1
        assert summary.cancelled_orders == 1
        assert summary.completion_rate == 33
        assert summary.total_revenue == 48000
        assert summary.average_order_value == 24000
        assert summary.total_customers == 2
        assert summary.today_orders == 2
        assert summary.today_revenue == 48000
        assert (summary.dine_in_orders, summary.delivery_orders) == (2, 1)

    @pytest.mark.asyncio
    async def test_trailing_week_lists_every_day(self, db_session, sales_history):
        await sales_history()

        week = (await get_analytics(db_session, TODAY)).last_7_days

        assert [d.business_date for d in week][:3] == [
            date(2024, 5, 10), date(2024, 5, 9), date(2024, 5, 8)
        ]
        assert len(week) == 7
        assert (week[1].order_count, week[1].revenue) == (0, 0)
        assert (week[2].order_count, week[2].revenue) == (1, 0)

    @pytest.mark.asyncio
    async def test_top_items_by_quantity(self, db_session, sales_history):
        await sales_history()

        top = (await get_analytics(db_session, TODAY)).top_items

        assert [(t.name, t.quantity) for t in top] == [("Masala Tea", 3), ("Chicken Momo", 2)]

    @pytest.mark.asyncio
    async def test_empty_restaurant(self, db_session):
        summary = await get_analytics(db_session, TODAY)

        assert summary.total_orders == 0
        assert summary.completion_rate == 0
        assert summary.average_order_value == 0
        assert summary.top_items == []
        assert len(summary.last_7_days) == 7


class TestCustomers:
    @pytest.mark.asyncio
    async def test_grouped_by_phone(self, db_session, sales_history):
        served, waiting, cancelled = await sales_history()

        customers = await list_customers(db_session)

        assert [c.phone for c in customers] == ["9800000001", "9811111111"]
        regular = customers[0]
        assert regular.name == "Sita S."
        assert regular.order_count == 2
        assert regular.total_spent == 36000
        assert regular.average_order_value == 36000
        assert regular.first_order_at == datetime(2024, 5, 8, 9, 0)
        assert regular.last_order_at == datetime(2024, 5, 10, 10, 0)
        assert customers[1].total_spent == 12000

    @pytest.mark.asyncio
    async def test_limit(self, db_session, sales_history):
        await sales_history()
        assert len(await list_customers(db_session, limit=1)) == 1


class TestAnalyticsRoutes:
    def test_endpoints(self, client):
        response = client.post(
            "/api/orders",
            json={
                "table_id": "4",
                "customer": {"name": "Ram Thapa", "phone": "9800000002"},
                "items": [{"menu_item_id": 1, "quantity": 2}],
            },
        )
        assert response.status_code == 201

        analytics = client.get("/api/analytics")
        assert analytics.status_code == 200
        body = analytics.json()
        assert body["total_orders"] == 1
        assert Decimal(body["total_revenue"]) == Decimal("360.00")
        assert body["top_items"] == [{"name": "Chicken Momo", "quantity": 2}]
        assert len(body["last_7_days"]) == 7

        customers = client.get("/api/customers").json()
        assert [(c["phone"], c["name"], c["order_count"]) for c in customers] == [
            ("9800000002", "Ram Thapa", 1)
        ]
        assert Decimal(customers[0]["total_spent"]) == Decimal("360.00")

    def test_bad_date_is_rejected(self, client):
        assert client.get("/api/analytics", params={"date": "yesterday"}).status_code == 422
