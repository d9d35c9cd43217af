# backend/modules/offline/services/api_client.py

"""
HTTP client used by the kitchen, reception and customer front ends.

Every network call goes through ``ResilientApiClient``. Infrastructure
failures never surface as business errors: writes are queued for replay,
reads can fall back to placeholder data that is flagged as such.
"""

import copy
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.config import settings
from ..exceptions import WAKING_UP_MESSAGE, ActionRejected, NetworkUnavailable
from .health_monitor import BackendHealthMonitor, wake_backend
from .pending_queue import FlushResult, PendingAction, PendingActionQueue

logger = logging.getLogger(__name__)

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Gateway answers from a host that is still booting
TRANSIENT_STATUS_CODES = {502, 503, 504}

# Shown when the backend is unreachable. Never synced back to the server.
PLACEHOLDER_DATA: Dict[str, Any] = {
    "menu": [
        {"id": 1, "name": "Chicken Momo", "category": "Momo", "price": "180.00", "is_available": True},
        {"id": 2, "name": "Veg Chowmein", "category": "Noodles", "price": "150.00", "is_available": True},
        {"id": 3, "name": "Masala Tea", "category": "Drinks", "price": "40.00", "is_available": True},
    ],
    "orders": [],
    "tables": [],
}

REJECTION_MESSAGES = {
    "ALREADY_PAID": "This order has already been paid.",
    "INVALID_TABLE": "That table number is not in use at this restaurant.",
    "AUTH_FAILED": "The deletion secret was not accepted.",
}


@dataclass
class ApiResult:
    data: Any = None
    is_placeholder: bool = False
    queued: bool = False
    action: Optional[PendingAction] = None
    error: Optional[Exception] = None


def describe_failure(exc: Exception) -> str:
    """User-facing message that separates 'try again soon' from 'this was refused'."""
    if isinstance(exc, NetworkUnavailable):
        return exc.message
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return WAKING_UP_MESSAGE
    if isinstance(exc, ActionRejected):
        known = REJECTION_MESSAGES.get(exc.error_code or "")
        return known or f"Request rejected: {exc.detail}"
    return f"Unexpected error: {exc}"


def _rejection_from_response(response: httpx.Response) -> ActionRejected:
    detail = response.reason_phrase or "Request failed"
    error_code = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = str(body.get("detail", detail))
        error_code = body.get("error_code")
    return ActionRejected(response.status_code, detail, error_code)


def _is_transient(response: httpx.Response) -> bool:
    if response.status_code in TRANSIENT_STATUS_CODES:
        return True
    if response.status_code >= 400:
        try:
            body = response.json()
        except ValueError:
            return False
        return isinstance(body, dict) and body.get("retryable") is True
    return False


class ResilientApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        monitor: Optional[BackendHealthMonitor] = None,
        queue: Optional[PendingActionQueue] = None,
        timeout: Optional[float] = None,
        placeholders: Optional[Dict[str, Any]] = None,
    ):
        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.http_timeout_seconds,
        )
        self.monitor = monitor or BackendHealthMonitor(client=self.client)
        self.queue = queue if queue is not None else PendingActionQueue(
            settings.offline_queue_path
        )
        self.placeholders = PLACEHOLDER_DATA if placeholders is None else placeholders
        self.monitor.on_recovered(self._flush_after_recovery)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        await self.client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            response = await self.client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TimeoutException as e:
            self.monitor.record_failure(f"timeout on {method} {path}")
            raise NetworkUnavailable() from e
        except httpx.TransportError as e:
            self.monitor.record_failure(f"{type(e).__name__} on {method} {path}")
            raise NetworkUnavailable() from e

        if _is_transient(response):
            self.monitor.record_failure(f"{response.status_code} on {method} {path}")
            raise NetworkUnavailable(status_code=response.status_code)

        # Any answer from the application means it is up
        if self.monitor.record_success():
            # Queued writes go out even when this answer is a rejection
            await self.monitor.notify_recovered()
        if response.is_error:
            raise _rejection_from_response(response)
        if not response.content:
            return None
        return response.json()

    async def _send_action(self, action: PendingAction) -> Any:
        return await self._send(
            action.method,
            action.path,
            json=action.body,
            headers={"Idempotency-Key": action.idempotency_key},
        )

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        placeholder: Optional[str] = None,
    ) -> ApiResult:
        """
        Read-only call. With ``placeholder`` set, an unreachable backend
        yields a copy of that placeholder data set marked ``is_placeholder``.
        """
        try:
            return ApiResult(data=await self._send("GET", path, params=params))
        except NetworkUnavailable as e:
            if placeholder is None or placeholder not in self.placeholders:
                raise
            logger.warning(f"Serving placeholder '{placeholder}' for GET {path}")
            return ApiResult(
                data=copy.deepcopy(self.placeholders[placeholder]),
                is_placeholder=True,
                error=e,
            )

    async def mutate(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        queue_on_failure: bool = True,
    ) -> ApiResult:
        """
        Send a write. On an infrastructure failure the write is queued and the
        result comes back with ``queued=True``; business rejections raise
        ``ActionRejected``.
        """
        method = method.upper()
        if method not in MUTATING_METHODS:
            raise ValueError(f"{method} is not a mutating method")

        action = PendingAction(
            method=method,
            path=path,
            body=json,
            idempotency_key=idempotency_key or str(uuid.uuid4()),
        )
        if self.queue.is_acknowledged(action.idempotency_key):
            return ApiResult()

        if len(self.queue) and queue_on_failure:
            # Earlier writes are still waiting; keep FIFO order behind them
            self.queue.enqueue(action)
            flushed = await self.flush_pending()
            return self._result_after_flush(action, flushed)

        try:
            return ApiResult(data=await self._send_action(action), action=action)
        except NetworkUnavailable as e:
            if not queue_on_failure:
                raise
            queued = self.queue.enqueue(action) or action
            return ApiResult(queued=True, action=queued, error=e)

    def _result_after_flush(
        self, action: PendingAction, flushed: FlushResult
    ) -> ApiResult:
        for sent in flushed.sent:
            if sent.idempotency_key == action.idempotency_key:
                return ApiResult(data=sent.response, action=sent)
        for rejected, error in flushed.rejected:
            if rejected.idempotency_key == action.idempotency_key:
                raise error
        return ApiResult(queued=True, action=action, error=flushed.stopped_on)

    async def post(self, path: str, json=None, **kwargs) -> ApiResult:
        return await self.mutate("POST", path, json=json, **kwargs)

    async def put(self, path: str, json=None, **kwargs) -> ApiResult:
        return await self.mutate("PUT", path, json=json, **kwargs)

    async def patch(self, path: str, json=None, **kwargs) -> ApiResult:
        return await self.mutate("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, json=None, **kwargs) -> ApiResult:
        return await self.mutate("DELETE", path, json=json, **kwargs)

    async def flush_pending(self) -> FlushResult:
        return await self.queue.flush(self._send_action)

    async def _flush_after_recovery(self):
        # A flush already in progress will pick up the remaining actions
        if len(self.queue) and not self.queue.flushing:
            await self.flush_pending()

    async def recover(self) -> bool:
        """Wake the backend and replay queued writes once it answers."""
        if not await wake_backend(self.client, monitor=self.monitor):
            return False
        await self.flush_pending()
        return True
