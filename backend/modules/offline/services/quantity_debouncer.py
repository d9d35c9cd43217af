# backend/modules/offline/services/quantity_debouncer.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from core.config import settings

logger = logging.getLogger(__name__)


class QuantityDebouncer:
    """
    Coalesces rapid quantity edits per cart line.

    Only the last quantity set for an item within ``delay`` seconds is
    persisted. A persist already in flight is never cancelled; a newer edit
    schedules its own.
    """

    def __init__(
        self,
        persist: Callable[[str, int], Awaitable[Any]],
        delay: Optional[float] = None,
    ):
        self.persist = persist
        self.delay = settings.cart_debounce_seconds if delay is None else delay
        self._pending: Dict[str, int] = {}
        self._timers: Dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> Dict[str, int]:
        return dict(self._pending)

    def set_quantity(self, item_id: str, quantity: int):
        self._pending[item_id] = quantity
        timer = self._timers.pop(item_id, None)
        if timer is not None:
            timer.cancel()
        self._timers[item_id] = asyncio.create_task(self._fire_later(item_id))

    async def _fire_later(self, item_id: str):
        await asyncio.sleep(self.delay)
        self._timers.pop(item_id, None)
        await self._persist(item_id)

    async def _persist(self, item_id: str):
        if item_id not in self._pending:
            return
        quantity = self._pending.pop(item_id)
        try:
            await self.persist(item_id, quantity)
        except Exception as e:
            logger.error(f"Persisting quantity {quantity} for item {item_id} failed: {e}")
            raise

    async def flush(self):
        """Persist every pending edit now, e.g. before submitting the order."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for item_id in list(self._pending):
            await self._persist(item_id)

    def cancel(self):
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._pending.clear()
