# backend/modules/realtime/services/broadcast_channel.py

"""
In-process fan-out of state-change events to connected clients.

Every subscriber owns a bounded FIFO queue, so events for one entity reach a
subscriber in emission order. Publishing never awaits: a subscriber whose
queue is full is dropped and has to re-fetch the state snapshot. Each event
carries a per-entity ``seq`` so clients can discard stale or repeated events.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from core.config import settings
from ..enums.event_enums import ClientRole, EntityType, EventType, STAFF_ROLES

logger = logging.getLogger(__name__)


def entity_key(entity_type: EntityType, entity_id: Any) -> str:
    return f"{EntityType(entity_type).value}:{entity_id}"


@dataclass
class RealtimeEvent:
    type: EventType
    entity_type: EntityType
    entity_id: str
    seq: int
    payload: Dict[str, Any] = field(default_factory=dict)
    table_id: Optional[str] = None
    order_id: Optional[int] = None
    emitted_at: datetime = field(default_factory=datetime.utcnow)
    origin: Optional[str] = None

    @property
    def key(self) -> str:
        return entity_key(self.entity_type, self.entity_id)

    def to_wire(self) -> Dict[str, Any]:
        message = {
            "type": self.type.value,
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "seq": self.seq,
            "emittedAt": self.emitted_at.isoformat(),
        }
        if self.table_id is not None:
            message["tableId"] = self.table_id
        if self.order_id is not None:
            message["orderId"] = self.order_id
        message.update(self.payload)
        return message

    @classmethod
    def from_wire(cls, message: Dict[str, Any], origin: Optional[str] = None):
        reserved = {
            "type", "entityType", "entityId", "seq", "emittedAt", "tableId", "orderId"
        }
        return cls(
            type=EventType(message["type"]),
            entity_type=EntityType(message["entityType"]),
            entity_id=str(message["entityId"]),
            seq=int(message["seq"]),
            payload={k: v for k, v in message.items() if k not in reserved},
            table_id=message.get("tableId"),
            order_id=message.get("orderId"),
            emitted_at=datetime.fromisoformat(message["emittedAt"]),
            origin=origin,
        )


class Subscription:
    """One connected client's view of the event stream."""

    _ids = itertools.count(1)

    def __init__(
        self,
        role: ClientRole,
        maxsize: int,
        table_id: Optional[str] = None,
        order_id: Optional[int] = None,
    ):
        self.id = next(self._ids)
        self.role = ClientRole(role)
        self.table_id = str(table_id) if table_id is not None else None
        self.order_id = order_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = False

    def accepts(self, event: RealtimeEvent) -> bool:
        if self.role in STAFF_ROLES:
            return True
        if event.type == EventType.SETTINGS_UPDATED:
            return False
        if self.table_id is not None and event.table_id == self.table_id:
            return True
        return self.order_id is not None and event.order_id == self.order_id

    def offer(self, event: RealtimeEvent) -> bool:
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    def drop(self):
        """Discard pending events and wake the reader with a terminal None."""
        self.dropped = True
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)

    async def next_event(self) -> Optional[RealtimeEvent]:
        return await self.queue.get()


class RealtimeBroadcastChannel:
    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.broadcast_queue_size
        self.subscribers: Set[Subscription] = set()
        self._seq: Dict[str, int] = {}
        self._relay = None
        self.started = False

    async def start(self, relay=None):
        """Attach an optional cross-process relay and begin accepting events."""
        if relay is not None:
            await relay.start(self)
            self._relay = relay
        self.started = True
        logger.info(
            f"Broadcast channel started (relay={'on' if self._relay else 'off'})"
        )

    async def close(self):
        if self._relay is not None:
            await self._relay.close()
            self._relay = None
        for subscription in list(self.subscribers):
            subscription.drop()
        self.subscribers.clear()
        self.started = False
        logger.info("Broadcast channel closed")

    def subscribe(
        self,
        role: ClientRole = ClientRole.KITCHEN,
        table_id: Optional[str] = None,
        order_id: Optional[int] = None,
    ) -> Subscription:
        subscription = Subscription(
            role, self.queue_size, table_id=table_id, order_id=order_id
        )
        self.subscribers.add(subscription)
        logger.debug(
            f"Subscriber {subscription.id} joined as {subscription.role.value}"
        )
        return subscription

    def unsubscribe(self, subscription: Subscription):
        self.subscribers.discard(subscription)

    def next_seq(self, key: str) -> int:
        seq = self._seq.get(key, 0) + 1
        self._seq[key] = seq
        return seq

    def current_seq(self) -> Dict[str, int]:
        return dict(self._seq)

    def publish(
        self,
        event_type: EventType,
        entity_type: EntityType,
        entity_id: Any,
        payload: Optional[Dict[str, Any]] = None,
        table_id: Optional[Any] = None,
        order_id: Optional[int] = None,
    ) -> RealtimeEvent:
        """
        Emit an event to every interested subscriber.

        Must only be called after the database transaction that produced the
        change has committed. Never blocks.
        """
        key = entity_key(entity_type, entity_id)
        event = RealtimeEvent(
            type=EventType(event_type),
            entity_type=EntityType(entity_type),
            entity_id=str(entity_id),
            seq=self.next_seq(key),
            payload=payload or {},
            table_id=str(table_id) if table_id is not None else None,
            order_id=order_id,
        )
        self.deliver_local(event)

        if self._relay is not None:
            self._relay.forward(event)
        return event

    def deliver_local(self, event: RealtimeEvent):
        """Fan an event out to local subscribers, dropping any that overflow."""
        if event.origin is not None:
            # Keep local counters ahead of anything seen from other processes
            if event.seq > self._seq.get(event.key, 0):
                self._seq[event.key] = event.seq

        overflowed = []
        for subscription in self.subscribers:
            if not subscription.accepts(event):
                continue
            if not subscription.offer(event):
                overflowed.append(subscription)

        for subscription in overflowed:
            logger.warning(
                f"Dropping slow subscriber {subscription.id} "
                f"({subscription.role.value}); client must resync"
            )
            self.subscribers.discard(subscription)
            subscription.drop()

    def reset(self):
        """Forget all subscribers and sequence counters."""
        for subscription in list(self.subscribers):
            subscription.drop()
        self.subscribers.clear()
        self._seq.clear()


broadcast_channel = RealtimeBroadcastChannel()
