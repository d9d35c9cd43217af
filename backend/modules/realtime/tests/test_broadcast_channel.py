# backend/modules/realtime/tests/test_broadcast_channel.py

import json
from unittest.mock import AsyncMock

import pytest

from modules.realtime.enums.event_enums import ClientRole, EntityType, EventType
from modules.realtime.services.broadcast_channel import (
    RealtimeBroadcastChannel,
    RealtimeEvent,
)
from modules.realtime.services.redis_relay import RedisEventRelay


@pytest.fixture
def channel():
    return RealtimeBroadcastChannel(queue_size=10)


def queued(subscription):
    items = []
    while not subscription.queue.empty():
        items.append(subscription.queue.get_nowait())
    return items


class TestPublish:
    def test_sequence_numbers_are_per_entity(self, channel):
        a1 = channel.publish(EventType.NEW_ORDER, EntityType.ORDER, 1)
        a2 = channel.publish(EventType.ORDER_STATUS_UPDATED, EntityType.ORDER, 1, {"status": "preparing"})
        b1 = channel.publish(EventType.NEW_ORDER, EntityType.ORDER, 2)
        t1 = channel.publish(EventType.TABLE_CLEARED, EntityType.TABLE, "1")

        assert (a1.seq, a2.seq, b1.seq, t1.seq) == (1, 2, 1, 1)
        assert channel.current_seq() == {"order:1": 2, "order:2": 1, "table:1": 1}

    def test_same_entity_events_arrive_in_emission_order(self, channel):
        subscription = channel.subscribe(ClientRole.KITCHEN)
        for status in ("preparing", "ready", "completed"):
            channel.publish(EventType.ORDER_STATUS_UPDATED, EntityType.ORDER, 9, {"status": status})

        received = queued(subscription)
        assert [e.payload["status"] for e in received] == ["preparing", "ready", "completed"]
        assert [e.seq for e in received] == [1, 2, 3]

    def test_wire_shape(self, channel):
        event = channel.publish(
            EventType.PAYMENT_COMPLETED, EntityType.ORDER, 3,
            {"paymentMethod": "cash"}, table_id=5, order_id=3,
        )
        wire = event.to_wire()
        assert wire["type"] == "paymentCompleted"
        assert wire["entityType"] == "order"
        assert wire["entityId"] == "3"
        assert wire["tableId"] == "5"
        assert wire["orderId"] == 3
        assert wire["paymentMethod"] == "cash"
        assert RealtimeEvent.from_wire(json.loads(json.dumps(wire))).payload == {"paymentMethod": "cash"}

    def test_customers_only_see_their_table(self, channel):
        staff = channel.subscribe(ClientRole.RECEPTION)
        table_five = channel.subscribe(ClientRole.CUSTOMER, table_id="5")
        own_order = channel.subscribe(ClientRole.CUSTOMER, order_id=11)

        channel.publish(EventType.NEW_ORDER, EntityType.ORDER, 10, table_id="5", order_id=10)
        channel.publish(EventType.NEW_ORDER, EntityType.ORDER, 11, order_id=11)
        channel.publish(EventType.NEW_ORDER, EntityType.ORDER, 12, table_id="6", order_id=12)
        channel.publish(EventType.SETTINGS_UPDATED, EntityType.SETTINGS, "tables", {"tableCount": 30})

        assert len(queued(staff)) == 4
        assert [e.entity_id for e in queued(table_five)] == ["10"]
        assert [e.entity_id for e in queued(own_order)] == ["11"]

    def test_slow_subscriber_is_dropped(self, channel):
        slow = channel.subscribe(ClientRole.KITCHEN)
        for order_id in range(11):
            channel.publish(EventType.NEW_ORDER, EntityType.ORDER, order_id)

        assert slow not in channel.subscribers
        assert slow.dropped is True
        assert queued(slow) == [None]

        # Publishing continues for everyone else
        fresh = channel.subscribe(ClientRole.KITCHEN)
        channel.publish(EventType.NEW_ORDER, EntityType.ORDER, 99)
        assert len(queued(fresh)) == 1

    @pytest.mark.asyncio
    async def test_close_releases_subscribers(self, channel):
        await channel.start()
        subscription = channel.subscribe(ClientRole.KITCHEN)
        await channel.close()
        assert channel.started is False
        assert await subscription.next_event() is None


class TestRedisRelay:
    @pytest.mark.asyncio
    async def test_publish_wraps_event_with_server_id(self, channel):
        client = AsyncMock()
        relay = RedisEventRelay(redis_url="redis://unused", channel_name="test:events", client=client)
        event = channel.publish(EventType.NEW_ORDER, EntityType.ORDER, 1)

        await relay.publish(event)

        name, message = client.publish.await_args.args
        assert name == "test:events"
        body = json.loads(message)
        assert body["server_id"] == relay.server_id
        assert body["event"]["type"] == "newOrder"

    @pytest.mark.asyncio
    async def test_start_attaches_to_channel(self, channel):
        client = AsyncMock()
        client.pubsub = lambda: AsyncMock()
        relay = RedisEventRelay(redis_url="redis://unused", client=client)
        relay._handle_subscriptions = AsyncMock()

        await channel.start(relay=relay)

        client.ping.assert_awaited_once()
        assert channel.started is True
        await channel.close()

    def test_remote_events_are_delivered_locally(self, channel):
        relay = RedisEventRelay(redis_url="redis://unused", client=AsyncMock())
        relay._channel = channel
        subscription = channel.subscribe(ClientRole.KITCHEN)
        remote = RealtimeEvent(
            type=EventType.ORDER_STATUS_UPDATED, entity_type=EntityType.ORDER,
            entity_id="4", seq=7, payload={"status": "ready"},
        )

        relay.process_message(json.dumps({"server_id": "other", "event": remote.to_wire()}))
        relay.process_message(json.dumps({"server_id": relay.server_id, "event": remote.to_wire()}))
        relay.process_message("not json")

        received = queued(subscription)
        assert len(received) == 1
        assert received[0].origin == "other"
        # Local numbering continues after the highest remote seq
        assert channel.next_seq("order:4") == 8
