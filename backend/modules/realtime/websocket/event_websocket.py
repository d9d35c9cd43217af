# backend/modules/realtime/websocket/event_websocket.py

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from ..enums.event_enums import ClientRole
from ..services.broadcast_channel import (
    RealtimeBroadcastChannel,
    Subscription,
    broadcast_channel,
)

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Bridges broadcast channel subscriptions to WebSocket clients"""

    def __init__(self, channel: RealtimeBroadcastChannel):
        self.channel = channel
        self.connection_metadata: Dict[WebSocket, Dict] = {}

    async def connect(
        self,
        websocket: WebSocket,
        role: ClientRole,
        table_id: Optional[str] = None,
        order_id: Optional[int] = None,
    ) -> Subscription:
        """Accept new connection"""
        await websocket.accept()
        subscription = self.channel.subscribe(
            role=role, table_id=table_id, order_id=order_id
        )
        self.connection_metadata[websocket] = {
            "role": role,
            "table_id": table_id,
            "order_id": order_id,
            "subscription": subscription,
            "connected_at": datetime.utcnow(),
        }
        logger.info(f"WebSocket connected as {ClientRole(role).value}")
        await websocket.send_json(
            {
                "type": "connected",
                "role": ClientRole(role).value,
                "timestamp": datetime.utcnow().isoformat(),
            }
        )
        return subscription

    def disconnect(self, websocket: WebSocket):
        """Remove connection"""
        metadata = self.connection_metadata.pop(websocket, None)
        if metadata:
            self.channel.unsubscribe(metadata["subscription"])
            logger.info(f"WebSocket disconnected ({metadata['role'].value})")

    async def pump_events(self, websocket: WebSocket, subscription: Subscription):
        """Forward queued events to the socket until the subscription ends."""
        while True:
            event = await subscription.next_event()
            if event is None:
                # Dropped for falling behind: the client must refetch state
                await websocket.send_json(
                    {
                        "type": "resyncRequired",
                        "timestamp": datetime.utcnow().isoformat(),
                    }
                )
                return
            await websocket.send_json(event.to_wire())

    async def handle_client_message(self, websocket: WebSocket, message: Dict):
        """Handle incoming message from client"""
        if message.get("type") == "ping":
            await websocket.send_json(
                {"type": "pong", "timestamp": datetime.utcnow().isoformat()}
            )

    async def receive_messages(self, websocket: WebSocket):
        while True:
            message = await websocket.receive_json()
            await self.handle_client_message(websocket, message)

    async def serve(
        self,
        websocket: WebSocket,
        role: ClientRole,
        table_id: Optional[str] = None,
        order_id: Optional[int] = None,
    ):
        subscription = await self.connect(websocket, role, table_id, order_id)
        pump = asyncio.create_task(self.pump_events(websocket, subscription))
        reader = asyncio.create_task(self.receive_messages(websocket))
        try:
            done, pending = await asyncio.wait(
                {pump, reader}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.error(f"WebSocket error: {exc}")
        finally:
            self.disconnect(websocket)


manager = ConnectionManager(broadcast_channel)
