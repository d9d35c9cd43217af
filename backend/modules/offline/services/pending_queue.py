# backend/modules/offline/services/pending_queue.py

"""
FIFO of writes made while the backend was unreachable.

Each action carries an idempotency key. ``flush`` replays actions in order,
stops at the first infrastructure failure and drops actions the backend
rejects on a business rule, reporting them to the caller.
"""

import asyncio
import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, Union

from ..exceptions import ActionRejected, NetworkUnavailable

logger = logging.getLogger(__name__)

# Acknowledged keys remembered so a replayed enqueue is ignored
ACKNOWLEDGED_HISTORY = 500


@dataclass
class PendingAction:
    method: str
    path: str
    body: Optional[Dict[str, Any]] = None
    idempotency_key: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    attempts: int = 0
    response: Any = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "path": self.path,
            "body": self.body,
            "idempotency_key": self.idempotency_key,
            "created_at": self.created_at,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingAction":
        return cls(
            method=data["method"],
            path=data["path"],
            body=data.get("body"),
            idempotency_key=data["idempotency_key"],
            created_at=data.get("created_at") or datetime.utcnow().isoformat(),
            attempts=data.get("attempts", 0),
        )


@dataclass
class FlushResult:
    sent: List[PendingAction] = field(default_factory=list)
    rejected: List[Tuple[PendingAction, ActionRejected]] = field(default_factory=list)
    remaining: int = 0
    stopped_on: Optional[NetworkUnavailable] = None

    @property
    def completed(self) -> bool:
        return self.remaining == 0 and self.stopped_on is None


class PendingActionQueue:
    def __init__(self, storage_path: Optional[Union[str, Path]] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        self._actions: Deque[PendingAction] = deque()
        self._acknowledged: Deque[str] = deque(maxlen=ACKNOWLEDGED_HISTORY)
        self._flush_lock = asyncio.Lock()
        self._load()

    def __len__(self) -> int:
        return len(self._actions)

    def items(self) -> List[PendingAction]:
        return list(self._actions)

    @property
    def flushing(self) -> bool:
        return self._flush_lock.locked()

    def is_acknowledged(self, idempotency_key: str) -> bool:
        return idempotency_key in self._acknowledged

    def enqueue(self, action: PendingAction) -> Optional[PendingAction]:
        """
        Append an action. An action whose key is already queued returns the
        queued copy; one whose key was already acknowledged is ignored.
        """
        if self.is_acknowledged(action.idempotency_key):
            logger.info(f"Ignoring already acknowledged action {action.idempotency_key}")
            return None
        for queued in self._actions:
            if queued.idempotency_key == action.idempotency_key:
                return queued

        self._actions.append(action)
        self._persist()
        logger.info(
            f"Queued {action.method} {action.path} ({len(self._actions)} pending)"
        )
        return action

    async def flush(
        self, send: Callable[[PendingAction], Awaitable[Any]]
    ) -> FlushResult:
        """Replay queued actions in FIFO order."""
        result = FlushResult()
        async with self._flush_lock:
            while self._actions:
                action = self._actions[0]
                action.attempts += 1
                try:
                    action.response = await send(action)
                except NetworkUnavailable as e:
                    logger.warning(
                        f"Flush paused at {action.method} {action.path}: {e.message}"
                    )
                    result.stopped_on = e
                    break
                except ActionRejected as e:
                    logger.warning(
                        f"Dropping queued {action.method} {action.path}: {e.detail}"
                    )
                    self._actions.popleft()
                    result.rejected.append((action, e))
                else:
                    self._actions.popleft()
                    self._acknowledged.append(action.idempotency_key)
                    result.sent.append(action)
                finally:
                    self._persist()

            result.remaining = len(self._actions)

        if result.sent or result.rejected:
            logger.info(
                f"Flushed {len(result.sent)} actions, {len(result.rejected)} rejected, "
                f"{result.remaining} remaining"
            )
        return result

    def clear(self):
        self._actions.clear()
        self._persist()

    def _persist(self):
        if self.storage_path is None:
            return
        data = {
            "actions": [a.to_dict() for a in self._actions],
            "acknowledged": list(self._acknowledged),
        }
        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data))
        tmp_path.replace(self.storage_path)

    def _load(self):
        if self.storage_path is None or not self.storage_path.exists():
            return
        try:
            data = json.loads(self.storage_path.read_text())
        except (OSError, ValueError) as e:
            logger.error(f"Could not read pending actions from {self.storage_path}: {e}")
            return
        self._actions.extend(PendingAction.from_dict(a) for a in data.get("actions", []))
        self._acknowledged.extend(data.get("acknowledged", []))
        if self._actions:
            logger.info(f"Restored {len(self._actions)} pending actions")
