# backend/modules/offline/services/health_monitor.py

"""
Client-side view of backend health.

Free-tier hosts put the backend to sleep; the first requests after a pause
time out while it boots. The monitor keeps a rolling healthy flag and
``wake_backend`` fires cheap probes until the server answers again.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx

from core.config import settings

logger = logging.getLogger(__name__)

WAKE_PATHS = ("/api/health/ping", "/api/health")


async def probe(
    client: httpx.AsyncClient, path: str, timeout: Optional[float] = None
) -> bool:
    """One GET against a health path; any transport error or non-2xx is a miss."""
    try:
        response = await client.get(
            path, timeout=timeout or settings.health_probe_timeout_seconds
        )
        return response.is_success
    except httpx.HTTPError as e:
        logger.debug(f"Health probe {path} failed: {e}")
        return False


class BackendHealthMonitor:
    """
    Rolling health flag.

    Flips to unhealthy after ``failure_threshold`` consecutive failures and
    back to healthy on the first success. Failures may come from the
    monitor's own polling or be reported by the API client.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        failure_threshold: Optional[int] = None,
        poll_interval: Optional[float] = None,
        probe_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.failure_threshold = failure_threshold or settings.health_failure_threshold
        self.poll_interval = poll_interval or settings.health_poll_interval_seconds
        self.probe_timeout = probe_timeout or settings.health_probe_timeout_seconds
        self._clock = clock

        self.healthy = True
        self.failure_count = 0
        self.last_check: Optional[float] = None
        self.last_error: Optional[str] = None
        self._listeners: List[Callable[[], Awaitable[None]]] = []

    def on_recovered(self, callback: Callable[[], Awaitable[None]]):
        """Register a coroutine function to run when the flag flips back to healthy."""
        self._listeners.append(callback)

    def record_success(self) -> bool:
        """Returns True when this success ended an unhealthy period."""
        recovered = not self.healthy
        self.healthy = True
        self.failure_count = 0
        self.last_error = None
        if recovered:
            logger.info("Backend is reachable again")
        return recovered

    def record_failure(self, reason: str = "") -> bool:
        """Returns True when this failure flipped the flag to unhealthy."""
        self.failure_count += 1
        self.last_error = reason or None
        logger.warning(
            f"Backend request failed ({self.failure_count}/{self.failure_threshold})"
            f"{': ' + reason if reason else ''}"
        )
        if self.healthy and self.failure_count >= self.failure_threshold:
            self.healthy = False
            logger.error("Backend marked unhealthy; queueing writes until it recovers")
            return True
        return False

    async def notify_recovered(self):
        for callback in list(self._listeners):
            try:
                await callback()
            except Exception as e:
                logger.error(f"Recovery callback failed: {e}")

    async def check(self, force: bool = False) -> bool:
        """Probe the ping endpoint unless a probe already ran this interval."""
        now = self._clock()
        if (
            not force
            and self.last_check is not None
            and now - self.last_check < self.poll_interval
        ):
            return self.healthy
        self.last_check = now

        if self.client is None:
            return self.healthy

        if await probe(self.client, WAKE_PATHS[0], self.probe_timeout):
            if self.record_success():
                await self.notify_recovered()
        else:
            self.record_failure("health probe failed")
        return self.healthy

    async def run(self, stop: asyncio.Event):
        """Poll until ``stop`` is set; wake the backend whenever it is unhealthy."""
        while not stop.is_set():
            healthy = await self.check(force=True)
            if not healthy and self.client is not None:
                if await wake_backend(self.client, monitor=self):
                    await self.notify_recovered()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    def status(self) -> dict:
        return {
            "healthy": self.healthy,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_check": self.last_check,
            "last_error": self.last_error,
        }

    def reset(self):
        self.healthy = True
        self.failure_count = 0
        self.last_check = None
        self.last_error = None


async def wake_backend(
    client: httpx.AsyncClient,
    monitor: Optional[BackendHealthMonitor] = None,
    paths: Sequence[str] = WAKE_PATHS,
    max_attempts: Optional[int] = None,
    backoff_base: Optional[float] = None,
    parallel: Optional[int] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """
    Fire parallel probes with exponential backoff until one succeeds.

    Returns True as soon as any probe answers, False once ``max_attempts``
    rounds have all failed. The monitor, if given, is told about the outcome.
    """
    max_attempts = max_attempts or settings.wake_max_attempts
    backoff_base = settings.wake_backoff_base_seconds if backoff_base is None else backoff_base
    parallel = max(parallel or settings.wake_parallel_probes, len(paths))
    targets = [paths[i % len(paths)] for i in range(parallel)]
    timeout = monitor.probe_timeout if monitor else settings.health_probe_timeout_seconds

    for attempt in range(max_attempts):
        results = await asyncio.gather(
            *(probe(client, path, timeout) for path in targets)
        )
        if any(results):
            logger.info(f"Backend answered wake probe on attempt {attempt + 1}")
            if monitor is not None:
                monitor.record_success()
            return True

        if attempt < max_attempts - 1:
            delay = backoff_base * (2 ** attempt)
            logger.info(
                f"Wake attempt {attempt + 1}/{max_attempts} failed, retrying in {delay:.1f}s"
            )
            await sleep(delay)

    logger.error(f"Backend did not wake after {max_attempts} attempts")
    if monitor is not None:
        monitor.record_failure("wake attempts exhausted")
    return False
