# backend/modules/offline/tests/test_api_client.py

import json

import httpx
import pytest

from modules.offline.exceptions import (
    WAKING_UP_MESSAGE,
    ActionRejected,
    NetworkUnavailable,
)
from modules.offline.services.api_client import ResilientApiClient, describe_failure
from modules.offline.services.health_monitor import BackendHealthMonitor
from modules.offline.services.pending_queue import PendingActionQueue

HANDOVER = {"type": "cash_handover", "amount": "2000", "description": "To owner"}


class FakeBackend:
    """MockTransport handler that can be switched off to simulate a sleeping host."""

    def __init__(self):
        self.up = True
        self.gateway_status = None
        self.requests = []

    def __call__(self, request):
        if not self.up:
            raise httpx.ConnectTimeout("timed out", request=request)
        if self.gateway_status:
            return httpx.Response(self.gateway_status, text="Bad Gateway")
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/api/health"):
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/orders" and request.method == "GET":
            return httpx.Response(200, json=[{"id": 7}])
        if path == "/api/payments/complete":
            return httpx.Response(
                409,
                json={"detail": "Order 7 is already paid", "error_code": "ALREADY_PAID",
                      "retryable": False},
            )
        if path == "/api/daybook/transaction":
            return httpx.Response(201, json={"id": len(self.posts("/api/daybook/transaction"))})
        if path == "/api/busy":
            return httpx.Response(500, json={"detail": "Database is restarting", "retryable": True})
        return httpx.Response(404, json={"detail": "Not Found"})

    def posts(self, path):
        return [r for r in self.requests if r.method == "POST" and r.url.path == path]


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_api(backend):
    def _make(failure_threshold=5, queue=None):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(backend), base_url="http://backend.test"
        )
        monitor = BackendHealthMonitor(client=client, failure_threshold=failure_threshold)
        api = ResilientApiClient(client=client, monitor=monitor, queue=queue)
        return api

    return _make


class TestReads:
    @pytest.mark.asyncio
    async def test_live_data(self, make_api):
        async with make_api() as api:
            result = await api.get("/api/orders", placeholder="orders")
        assert result.data == [{"id": 7}]
        assert result.is_placeholder is False

    @pytest.mark.asyncio
    async def test_placeholder_when_unreachable(self, backend, make_api):
        backend.up = False
        async with make_api() as api:
            result = await api.get("/api/menu/items", placeholder="menu")
            result.data.append({"id": 99})
            again = await api.get("/api/menu/items", placeholder="menu")

        assert result.is_placeholder is True
        assert isinstance(result.error, NetworkUnavailable)
        assert len(again.data) == 3

    @pytest.mark.asyncio
    async def test_no_placeholder_raises(self, backend, make_api):
        backend.up = False
        async with make_api() as api:
            with pytest.raises(NetworkUnavailable):
                await api.get("/api/orders")


class TestWrites:
    @pytest.mark.asyncio
    async def test_sends_idempotency_key(self, backend, make_api):
        async with make_api() as api:
            result = await api.post("/api/daybook/transaction", json=HANDOVER,
                                    idempotency_key="handover-1")

        assert result.data == {"id": 1}
        assert result.queued is False
        assert backend.requests[-1].headers["Idempotency-Key"] == "handover-1"

    @pytest.mark.asyncio
    async def test_business_rejection_is_not_queued(self, make_api):
        async with make_api() as api:
            with pytest.raises(ActionRejected) as exc_info:
                await api.post("/api/payments/complete", json={"order_id": 7})
            assert len(api.queue) == 0

        assert exc_info.value.error_code == "ALREADY_PAID"
        assert describe_failure(exc_info.value) == "This order has already been paid."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("gateway_status", [502, 503, 504])
    async def test_gateway_errors_are_queued(self, backend, make_api, gateway_status):
        backend.gateway_status = gateway_status
        async with make_api() as api:
            result = await api.post("/api/daybook/transaction", json=HANDOVER)

            assert result.queued is True
            assert result.error.status_code == gateway_status
            assert len(api.queue) == 1
            assert api.monitor.failure_count == 1

    @pytest.mark.asyncio
    async def test_retryable_body_is_infrastructure(self, make_api):
        async with make_api() as api:
            result = await api.put("/api/busy", json={})
        assert result.queued is True

    @pytest.mark.asyncio
    async def test_reads_are_not_mutations(self, make_api):
        async with make_api() as api:
            with pytest.raises(ValueError):
                await api.mutate("GET", "/api/orders")

    @pytest.mark.asyncio
    async def test_new_writes_wait_behind_queued_ones(self, backend, make_api):
        backend.up = False
        async with make_api() as api:
            await api.post("/api/daybook/transaction", json={**HANDOVER, "amount": "100"})
            second = await api.post("/api/daybook/transaction", json={**HANDOVER, "amount": "200"})
            assert second.queued is True
            assert [a.body["amount"] for a in api.queue.items()] == ["100", "200"]

            backend.up = True
            third = await api.post("/api/daybook/transaction", json={**HANDOVER, "amount": "300"})

        amounts = [
            json.loads(r.content)["amount"]
            for r in backend.posts("/api/daybook/transaction")
        ]
        assert amounts == ["100", "200", "300"]
        assert third.queued is False
        assert third.data == {"id": 3}


class TestBackendWakeUp:
    @pytest.mark.asyncio
    async def test_handover_survives_backend_sleep(self, backend, make_api, tmp_path):
        """
        Five failed health probes mark the backend unhealthy, a cash handover
        made meanwhile is queued, and after reconnecting it reaches the
        server exactly once.
        """
        queue = PendingActionQueue(tmp_path / "pending.json")
        async with make_api(failure_threshold=5, queue=queue) as api:
            backend.up = False
            for _ in range(5):
                await api.monitor.check(force=True)
            assert api.monitor.healthy is False

            result = await api.post(
                "/api/daybook/transaction", json=HANDOVER, idempotency_key="handover-42"
            )
            assert result.queued is True
            assert describe_failure(result.error) == WAKING_UP_MESSAGE

            backend.up = True
            assert await api.recover() is True
            assert api.monitor.healthy is True
            assert len(api.queue) == 0

            # A replay of the same action and later recoveries send nothing new
            replay = await api.post(
                "/api/daybook/transaction", json=HANDOVER, idempotency_key="handover-42"
            )
            assert replay.data is None
            await api.flush_pending()
            await api.monitor.check(force=True)

        posts = backend.posts("/api/daybook/transaction")
        assert len(posts) == 1
        assert posts[0].headers["Idempotency-Key"] == "handover-42"

    @pytest.mark.asyncio
    async def test_first_successful_request_flushes_the_queue(self, backend, make_api):
        async with make_api(failure_threshold=1) as api:
            backend.up = False
            await api.post("/api/daybook/transaction", json=HANDOVER)
            assert api.monitor.healthy is False

            backend.up = True
            result = await api.get("/api/orders")

            assert result.data == [{"id": 7}]
            assert len(api.queue) == 0
        assert len(backend.posts("/api/daybook/transaction")) == 1

    @pytest.mark.asyncio
    async def test_rejection_after_outage_still_flushes_the_queue(self, backend, make_api):
        async with make_api(failure_threshold=1) as api:
            backend.up = False
            await api.post("/api/daybook/transaction", json=HANDOVER)
            assert api.monitor.healthy is False

            backend.up = True
            with pytest.raises(ActionRejected) as exc_info:
                await api.get("/api/orders/99")

            assert exc_info.value.status_code == 404
            assert api.monitor.healthy is True
            assert len(api.queue) == 0
        assert len(backend.posts("/api/daybook/transaction")) == 1


class TestDescribeFailure:
    def test_messages(self):
        request = httpx.Request("GET", "http://backend.test/api/orders")
        assert describe_failure(NetworkUnavailable()) == WAKING_UP_MESSAGE
        assert describe_failure(httpx.ReadTimeout("slow", request=request)) == WAKING_UP_MESSAGE
        assert describe_failure(
            ActionRejected(400, "Quantity must be positive", "VALIDATION_ERROR")
        ) == "Request rejected: Quantity must be positive"
        assert describe_failure(RuntimeError("boom")) == "Unexpected error: boom"
