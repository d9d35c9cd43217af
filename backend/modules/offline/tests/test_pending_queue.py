# backend/modules/offline/tests/test_pending_queue.py

import json

import pytest

from modules.offline.exceptions import ActionRejected, NetworkUnavailable
from modules.offline.services.pending_queue import PendingAction, PendingActionQueue


def handover(amount="500", key=None):
    action = PendingAction(
        method="POST",
        path="/api/daybook/transaction",
        body={"type": "cash_handover", "amount": amount},
    )
    if key:
        action.idempotency_key = key
    return action


class Recorder:
    """Fake sender: fails or rejects by path, records what went through."""

    def __init__(self, offline=False, reject_amounts=()):
        self.offline = offline
        self.reject_amounts = set(reject_amounts)
        self.sent = []

    async def __call__(self, action):
        if self.offline:
            raise NetworkUnavailable()
        if action.body and action.body.get("amount") in self.reject_amounts:
            raise ActionRejected(400, "Amount rejected", "VALIDATION_ERROR")
        self.sent.append(action.body["amount"])
        return {"id": len(self.sent)}


class TestPendingActionQueue:
    @pytest.mark.asyncio
    async def test_flush_is_fifo(self):
        queue = PendingActionQueue()
        for amount in ("100", "200", "300"):
            queue.enqueue(handover(amount))
        send = Recorder()

        result = await queue.flush(send)

        assert send.sent == ["100", "200", "300"]
        assert result.completed
        assert [a.response for a in result.sent] == [{"id": 1}, {"id": 2}, {"id": 3}]
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_flush_stops_on_network_failure(self):
        queue = PendingActionQueue()
        queue.enqueue(handover("100"))
        queue.enqueue(handover("200"))

        result = await queue.flush(Recorder(offline=True))

        assert result.completed is False
        assert result.remaining == 2
        assert isinstance(result.stopped_on, NetworkUnavailable)
        assert [a.attempts for a in queue.items()] == [1, 0]

    @pytest.mark.asyncio
    async def test_rejected_actions_are_dropped_and_reported(self):
        queue = PendingActionQueue()
        queue.enqueue(handover("100"))
        queue.enqueue(handover("-5"))
        queue.enqueue(handover("300"))
        send = Recorder(reject_amounts={"-5"})

        result = await queue.flush(send)

        assert send.sent == ["100", "300"]
        assert len(result.rejected) == 1
        action, error = result.rejected[0]
        assert action.body["amount"] == "-5"
        assert error.error_code == "VALIDATION_ERROR"
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_acknowledged_action_is_not_requeued(self):
        queue = PendingActionQueue()
        queue.enqueue(handover(key="handover-1"))
        await queue.flush(Recorder())

        assert queue.enqueue(handover(key="handover-1")) is None
        assert len(queue) == 0

    def test_duplicate_key_returns_queued_copy(self):
        queue = PendingActionQueue()
        first = queue.enqueue(handover("100", key="k"))

        again = queue.enqueue(handover("999", key="k"))

        assert again is first
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_survives_restart(self, tmp_path):
        path = tmp_path / "pending.json"
        queue = PendingActionQueue(path)
        queue.enqueue(handover("100", key="sent-before-restart"))
        await queue.flush(Recorder())
        queue.enqueue(handover("200", key="still-pending"))

        restored = PendingActionQueue(path)

        assert [a.idempotency_key for a in restored.items()] == ["still-pending"]
        assert restored.is_acknowledged("sent-before-restart")
        assert json.loads(path.read_text())["actions"][0]["body"]["amount"] == "200"

    def test_unreadable_storage_starts_empty(self, tmp_path):
        path = tmp_path / "pending.json"
        path.write_text("{not json")

        assert len(PendingActionQueue(path)) == 0

    def test_clear(self, tmp_path):
        queue = PendingActionQueue(tmp_path / "pending.json")
        queue.enqueue(handover())
        queue.clear()
        assert len(PendingActionQueue(tmp_path / "pending.json")) == 0
