"""
Push channel and resync snapshot.

Clients connect to ``/ws/events`` for live events. Events are not replayed,
so a client that connects, reconnects or receives ``resyncRequired``
fetches ``/api/state/snapshot`` and then applies only events whose ``seq``
is newer than the snapshot's.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, status
from sqlalchemy.orm import Session

from core.database import get_db
from modules.orders.services.order_events import order_to_wire
from modules.orders.services.order_service import list_active_orders
from modules.settings.services.settings_service import get_restaurant_settings
from modules.tables.services.table_session_service import list_table_statuses
from ..enums.event_enums import ClientRole
from ..services.broadcast_channel import broadcast_channel
from ..websocket.event_websocket import manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


@router.websocket("/ws/events")
async def events_websocket(
    websocket: WebSocket,
    role: str = Query(ClientRole.KITCHEN.value),
    table_id: Optional[str] = Query(None),
    order_id: Optional[int] = Query(None),
):
    """
    Query parameters:
    - role: kitchen, reception or customer
    - table_id / order_id: required for customers, limits their events
    """
    try:
        client_role = ClientRole(role)
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Unknown role")
        return
    if client_role == ClientRole.CUSTOMER and table_id is None and order_id is None:
        await websocket.close(
            code=status.WS_1008_POLICY_VIOLATION,
            reason="Customers must subscribe to a table or order",
        )
        return

    await manager.serve(websocket, client_role, table_id=table_id, order_id=order_id)


@router.get("/api/state/snapshot")
async def state_snapshot(db: Session = Depends(get_db)):
    """Full current state with the sequence numbers it reflects."""
    # Sequence numbers first: events published after this point are newer
    seq = broadcast_channel.current_seq()
    restaurant_settings = get_restaurant_settings(db)
    tables = await list_table_statuses(db)
    orders = await list_active_orders(db)
    return {
        "seq": seq,
        "generatedAt": datetime.utcnow().isoformat(),
        "settings": {
            "tableCount": restaurant_settings["table_count"],
            "deliveryFee": str(restaurant_settings["delivery_fee"]),
            "currency": restaurant_settings["currency"],
        },
        "tables": [
            {
                "tableId": t["table_id"],
                "status": t["status"],
                "customerName": t["customer_name"],
                "activeOrderCount": t["active_order_count"],
                "activeTotal": str(t["active_total"]),
            }
            for t in tables
        ],
        "orders": [order_to_wire(o) for o in orders],
    }
