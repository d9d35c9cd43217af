# backend/modules/orders/tests/test_order_service.py

import re
from datetime import datetime
from decimal import Decimal

import pytest

from core.exceptions import (
    AuthenticationError,
    InvalidTableError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from modules.orders.enums.order_enums import OrderStatus, OrderType
from modules.orders.models.order_models import Order, OrderItem
from modules.orders.schemas.order_schemas import CustomerInfo, OrderCreate, OrderItemCreate
from modules.orders.services.order_service import (
    can_transition,
    create_order,
    delete_order,
    get_order,
    list_active_orders,
    list_order_history,
    mark_order_complete,
    update_order_status,
)
from modules.settings.services.settings_service import update_delivery_fee
from modules.tables.enums.table_enums import TableStatus
from modules.tables.models.table_models import RestaurantTable
from modules.tables.services.table_session_service import clear_table

DELETE_SECRET = "test-delete-secret"


def table_status(db_session, table_id):
    db_session.expire_all()
    return db_session.query(RestaurantTable).filter_by(table_id=table_id).one().status


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_dine_in_order_is_priced_server_side(self, db_session, events):
        data = OrderCreate(
            order_type=OrderType.DINE_IN,
            table_id=5,
            customer=CustomerInfo(name="Sita", phone="9800000001"),
            items=[
                OrderItemCreate(menu_item_id=1, quantity=2, unit_price=Decimal("1")),
                OrderItemCreate(menu_item_id=3, quantity=1),
            ],
            client_total=Decimal("10.00"),
        )

        order = await create_order(db_session, data)

        assert order.table_id == "5"
        assert order.status == OrderStatus.PENDING.value
        assert order.subtotal == 40000
        assert order.total == 40000
        assert [(i.name, i.unit_price, i.line_total) for i in order.order_items] == [
            ("Chicken Momo", 18000, 36000),
            ("Masala Tea", 4000, 4000),
        ]
        assert re.fullmatch(r"ORD-\d{8}-001", order.order_number)
        assert table_status(db_session, "5") == TableStatus.ORDERING.value

        published = events.drain()
        assert [e.type.value for e in published] == ["newOrder", "tableStatusUpdated"]
        assert published[0].payload["order"]["total"] == "400.00"
        assert published[0].order_id == order.id

    @pytest.mark.asyncio
    async def test_order_numbers_increase_per_day(self, db_session):
        day = datetime(2024, 5, 1, 9, 30)
        data = OrderCreate(
            table_id="1",
            customer=CustomerInfo(name="A", phone="1"),
            items=[OrderItemCreate(menu_item_id=2)],
        )
        first = await create_order(db_session, data, now=day)
        second = await create_order(db_session, data, now=day)
        next_day = await create_order(db_session, data, now=datetime(2024, 5, 2, 9, 0))

        assert first.order_number == "ORD-20240501-001"
        assert second.order_number == "ORD-20240501-002"
        assert next_day.order_number == "ORD-20240502-001"

    @pytest.mark.asyncio
    async def test_custom_item_keeps_entered_price(self, place_order):
        order = await place_order(items=[
            OrderItemCreate(is_custom=True, name="Extra Achar", unit_price=Decimal("25.50"), quantity=2),
        ])
        assert order.total == 5100
        assert order.order_items[0].menu_item_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("item", [
        OrderItemCreate(menu_item_id=999),
        OrderItemCreate(menu_item_id=4),
        OrderItemCreate(is_custom=True, name="Free", unit_price=Decimal("0")),
        OrderItemCreate(is_custom=True, name="No price"),
        OrderItemCreate(menu_item_id=1, quantity=0),
    ])
    async def test_invalid_items_are_rejected(self, db_session, place_order, item):
        with pytest.raises(ValidationError):
            await place_order(items=[item])
        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderItem).count() == 0
        assert db_session.query(RestaurantTable).count() == 0

    @pytest.mark.asyncio
    async def test_dine_in_requires_valid_table(self, place_order):
        with pytest.raises(ValidationError):
            await place_order(table_id=None)
        with pytest.raises(InvalidTableError):
            await place_order(table_id="26")

    @pytest.mark.asyncio
    async def test_customer_details_required(self, place_order):
        with pytest.raises(ValidationError):
            await place_order(name="  ")
        with pytest.raises(ValidationError):
            await place_order(phone="")

    @pytest.mark.asyncio
    async def test_delivery_order_adds_fee(self, db_session, place_order):
        await update_delivery_fee(db_session, Decimal("50"))

        order = await place_order(order_type=OrderType.DELIVERY)

        assert order.table_id is None
        assert order.delivery_fee == 5000
        assert order.total == 36000 + 5000
        assert db_session.query(RestaurantTable).count() == 0

    @pytest.mark.asyncio
    async def test_delivery_requires_address(self, place_order):
        with pytest.raises(ValidationError):
            await place_order(order_type=OrderType.DELIVERY, delivery_address=" ")

    @pytest.mark.asyncio
    async def test_replayed_submission_returns_original(self, db_session, events):
        data = OrderCreate(
            table_id="7",
            customer=CustomerInfo(name="Sita", phone="9800000001"),
            items=[OrderItemCreate(menu_item_id=3, quantity=2)],
            idempotency_key="tab7-tea",
        )

        first = await create_order(db_session, data)
        events.drain()
        again = await create_order(db_session, data)

        assert again.id == first.id
        assert db_session.query(Order).count() == 1
        assert events.drain() == []


class TestStatusTransitions:
    def test_transition_table(self):
        assert can_transition(OrderStatus.PENDING, OrderStatus.PREPARING)
        assert can_transition(OrderStatus.PREPARING, OrderStatus.READY)
        assert can_transition(OrderStatus.PREPARING, OrderStatus.CANCELLED)
        assert not can_transition(OrderStatus.PENDING, OrderStatus.READY)
        assert not can_transition(OrderStatus.READY, OrderStatus.CANCELLED)
        assert not can_transition(OrderStatus.CANCELLED, OrderStatus.PENDING)

    @pytest.mark.asyncio
    async def test_kitchen_flow_updates_table(self, db_session, place_order, advance_order, events):
        order = await place_order("7")
        events.drain()

        updated = await advance_order(order.id, OrderStatus.PREPARING)

        assert updated.status == OrderStatus.PREPARING.value
        assert table_status(db_session, "7") == TableStatus.DINING.value
        published = events.drain()
        assert [e.type.value for e in published] == ["orderStatusUpdated", "tableStatusUpdated"]
        assert published[0].payload["previousStatus"] == "pending"

        updated = await advance_order(order.id, OrderStatus.READY)
        assert updated.status == OrderStatus.READY.value

    @pytest.mark.asyncio
    async def test_skipping_a_step_is_rejected(self, db_session, place_order):
        order = await place_order()
        with pytest.raises(InvalidTransitionError) as exc_info:
            await update_order_status(db_session, order.id, OrderStatus.READY)
        assert exc_info.value.current == "pending"
        db_session.expire_all()
        assert db_session.get(Order, order.id).status == OrderStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_completion_is_not_a_kitchen_transition(self, db_session, place_order, advance_order):
        order = await place_order()
        await advance_order(order.id, OrderStatus.PREPARING, OrderStatus.READY)
        with pytest.raises(InvalidTransitionError):
            await update_order_status(db_session, order.id, OrderStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_unknown_status(self, db_session, place_order):
        order = await place_order()
        with pytest.raises(ValidationError):
            await update_order_status(db_session, order.id, "served")

    @pytest.mark.asyncio
    async def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            await update_order_status(db_session, 12345, OrderStatus.PREPARING)

    @pytest.mark.asyncio
    async def test_cancelling_last_order_frees_table_for_new_orders(
        self, db_session, place_order, advance_order
    ):
        first = await place_order("8")
        second = await place_order("8")
        await advance_order(first.id, OrderStatus.CANCELLED)
        assert table_status(db_session, "8") == TableStatus.ORDERING.value

        await advance_order(second.id, OrderStatus.CANCELLED)
        assert table_status(db_session, "8") == TableStatus.OCCUPIED.value

    @pytest.mark.asyncio
    async def test_archived_order_cannot_move(self, db_session, place_order, advance_order):
        order = await place_order("2")
        await advance_order(order.id, OrderStatus.PREPARING, OrderStatus.READY)
        await clear_table(db_session, "2")
        with pytest.raises(InvalidTransitionError):
            await update_order_status(db_session, order.id, OrderStatus.CANCELLED)


class TestDeliveryCompletion:
    @pytest.mark.asyncio
    async def test_ready_delivery_is_completed_and_archived(self, db_session, place_order, advance_order):
        order = await place_order(order_type=OrderType.DELIVERY)
        await advance_order(order.id, OrderStatus.PREPARING, OrderStatus.READY)

        done = await mark_order_complete(db_session, order.id)

        assert done.status == OrderStatus.COMPLETED.value
        assert done.completed_at is not None
        assert done.archived_at is not None
        assert await list_active_orders(db_session) == []

    @pytest.mark.asyncio
    async def test_dine_in_cannot_be_marked_complete(self, db_session, place_order, advance_order):
        order = await place_order("3")
        await advance_order(order.id, OrderStatus.PREPARING, OrderStatus.READY)
        with pytest.raises(InvalidTransitionError):
            await mark_order_complete(db_session, order.id)

    @pytest.mark.asyncio
    async def test_pending_delivery_cannot_be_completed(self, db_session, place_order):
        order = await place_order(order_type=OrderType.DELIVERY)
        with pytest.raises(InvalidTransitionError):
            await mark_order_complete(db_session, order.id)

    @pytest.mark.asyncio
    async def test_cancelled_delivery_leaves_the_active_list(self, db_session, place_order, advance_order):
        order = await place_order(order_type=OrderType.DELIVERY)

        cancelled = await advance_order(order.id, OrderStatus.CANCELLED)

        assert cancelled.status == OrderStatus.CANCELLED.value
        assert cancelled.archived_at is not None
        assert cancelled.completed_at is None
        assert await list_active_orders(db_session) == []
        assert [o.id for o in await list_order_history(db_session)] == [order.id]
        result = await delete_order(db_session, order.id, DELETE_SECRET)
        assert result["order_id"] == order.id

    @pytest.mark.asyncio
    async def test_cancelled_dine_in_waits_for_table_clear(self, db_session, place_order, advance_order):
        order = await place_order("6")

        cancelled = await advance_order(order.id, OrderStatus.CANCELLED)

        assert cancelled.archived_at is None
        assert [o.id for o in await list_active_orders(db_session)] == [order.id]

    @pytest.mark.asyncio
    async def test_unarchived_cancelled_delivery_can_be_archived(self, db_session, place_order):
        order = await place_order(order_type=OrderType.DELIVERY)
        order.status = OrderStatus.CANCELLED.value
        db_session.commit()

        archived = await mark_order_complete(db_session, order.id)

        assert archived.status == OrderStatus.CANCELLED.value
        assert archived.archived_at is not None
        assert archived.completed_at is None


class TestQueries:
    @pytest.mark.asyncio
    async def test_active_order_filters(self, db_session, place_order, advance_order):
        dine_in = await place_order("4")
        delivery = await place_order(order_type=OrderType.DELIVERY)
        await advance_order(delivery.id, OrderStatus.PREPARING)

        assert [o.id for o in await list_active_orders(db_session)] == [dine_in.id, delivery.id]
        assert [o.id for o in await list_active_orders(db_session, status=OrderStatus.PREPARING)] == [delivery.id]
        assert [o.id for o in await list_active_orders(db_session, order_type=OrderType.DINE_IN)] == [dine_in.id]
        assert [o.id for o in await list_active_orders(db_session, table_id="4")] == [dine_in.id]

    @pytest.mark.asyncio
    async def test_history_lists_archived_orders(self, db_session, place_order, advance_order):
        order = await place_order("4", phone="9811000000")
        await advance_order(order.id, OrderStatus.PREPARING, OrderStatus.READY)
        await clear_table(db_session, "4")
        await place_order("5")

        history = await list_order_history(db_session, phone="9811000000")
        assert [o.id for o in history] == [order.id]

    @pytest.mark.asyncio
    async def test_get_order(self, db_session, place_order):
        order = await place_order()
        fetched = await get_order(db_session, order.id)
        assert fetched.order_number == order.order_number
        with pytest.raises(NotFoundError):
            await get_order(db_session, order.id + 100)


class TestDeleteOrder:
    @pytest.mark.asyncio
    async def test_wrong_secret(self, db_session, place_order):
        order = await place_order()
        with pytest.raises(AuthenticationError):
            await delete_order(db_session, order.id, "nope")
        with pytest.raises(AuthenticationError):
            await delete_order(db_session, order.id, None)

    @pytest.mark.asyncio
    async def test_active_order_cannot_be_deleted(self, db_session, place_order):
        order = await place_order()
        with pytest.raises(InvalidTransitionError):
            await delete_order(db_session, order.id, DELETE_SECRET)

    @pytest.mark.asyncio
    async def test_archived_order_is_deleted(self, db_session, place_order, advance_order, events):
        order = await place_order(order_type=OrderType.DELIVERY)
        await advance_order(order.id, OrderStatus.PREPARING, OrderStatus.READY)
        await mark_order_complete(db_session, order.id)
        events.drain()

        result = await delete_order(db_session, order.id, DELETE_SECRET)

        assert result["order_id"] == order.id
        assert result["orphaned_transaction_ids"] == []
        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderItem).count() == 0
        assert events.types() == ["orderDeleted"]
