"""
Client-side mirror of server state, kept current from broadcast events.

Events are applied at-least-once, so every handler is idempotent and any
event whose ``seq`` is not newer than the last one applied for the same
entity is ignored. After a disconnect the mirror is rebuilt from
``GET /api/state/snapshot``.
"""

import logging
from typing import Any, Dict, Optional

from ..enums.event_enums import EventType

logger = logging.getLogger(__name__)


class ClientStateMirror:
    def __init__(self):
        self.orders: Dict[int, Dict[str, Any]] = {}
        self.tables: Dict[str, Dict[str, Any]] = {}
        self.transactions: Dict[int, Dict[str, Any]] = {}
        self.settings: Dict[str, Any] = {}
        self.last_seq: Dict[str, int] = {}
        self.needs_resync = False

    def load_snapshot(self, snapshot: Dict[str, Any]):
        """Replace local state with an authoritative snapshot."""
        self.orders = {o["id"]: dict(o) for o in snapshot.get("orders", [])}
        self.tables = {str(t["tableId"]): dict(t) for t in snapshot.get("tables", [])}
        self.settings = dict(snapshot.get("settings", {}))
        self.transactions = {}
        self.last_seq = dict(snapshot.get("seq", {}))
        self.needs_resync = False

    def mark_disconnected(self):
        self.needs_resync = True

    def apply(self, event: Dict[str, Any]) -> bool:
        """
        Apply one wire event. Returns False when the event was stale or a
        duplicate and therefore ignored.
        """
        key = f"{event['entityType']}:{event['entityId']}"
        seq = int(event["seq"])
        if seq <= self.last_seq.get(key, 0):
            logger.debug(f"Ignoring stale {event['type']} for {key} (seq {seq})")
            return False

        handler = self._handlers.get(EventType(event["type"]))
        if handler is not None:
            handler(self, event)
        self.last_seq[key] = seq
        return True

    def _order_id(self, event) -> int:
        return int(event["entityId"])

    def _on_new_order(self, event):
        order = dict(event.get("order") or {})
        order.setdefault("id", self._order_id(event))
        self.orders[self._order_id(event)] = order

    def _on_order_status(self, event):
        order = self.orders.setdefault(self._order_id(event), {"id": self._order_id(event)})
        for field_name in ("status", "paymentStatus", "archived"):
            if field_name in event:
                order[field_name] = event[field_name]
        if event.get("archived"):
            self.orders.pop(self._order_id(event), None)

    def _on_order_deleted(self, event):
        self.orders.pop(self._order_id(event), None)

    def _on_payment_completed(self, event):
        order = self.orders.get(self._order_id(event))
        if order is not None:
            order["paymentStatus"] = "paid"
            order["paymentMethod"] = event.get("paymentMethod")

    def _table(self, event) -> Dict[str, Any]:
        table_id = str(event["entityId"])
        return self.tables.setdefault(table_id, {"tableId": table_id})

    def _on_table_cleared(self, event):
        # Cleared tables keep their entry; only the session fields reset
        self._table(event).update(
            status="empty",
            customerName=None,
            sessionStart=None,
            activeOrderCount=0,
            activeTotal="0.00",
        )
        for order_id in event.get("archivedOrderIds", []):
            self.orders.pop(order_id, None)

    def _on_table_status(self, event):
        table = self._table(event)
        for field_name in ("status", "customerName", "sessionStart"):
            if field_name in event:
                table[field_name] = event[field_name]

    def _on_transaction(self, event):
        transaction = dict(event.get("transaction") or {})
        self.transactions[int(event["entityId"])] = transaction

    def _on_settings(self, event):
        for field_name in ("tableCount", "deliveryFee"):
            if field_name in event:
                self.settings[field_name] = event[field_name]

    def order(self, order_id: int) -> Optional[Dict[str, Any]]:
        return self.orders.get(order_id)

    _handlers = {
        EventType.NEW_ORDER: _on_new_order,
        EventType.ORDER_STATUS_UPDATED: _on_order_status,
        EventType.ORDER_DELETED: _on_order_deleted,
        EventType.PAYMENT_COMPLETED: _on_payment_completed,
        EventType.TABLE_CLEARED: _on_table_cleared,
        EventType.TABLE_STATUS_UPDATED: _on_table_status,
        EventType.TRANSACTION_CREATED: _on_transaction,
        EventType.SETTINGS_UPDATED: _on_settings,
    }
