from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from chat_sync.application.exceptions import SyncError
from chat_sync.application.ports.api import ChatApi
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.config import settings
from chat_sync.domain.entities.availability import AvailabilitySnapshot

logger = logging.getLogger(__name__)


class AvailabilityProber:
    """Answers "is the backend reachable right now?".

    A result is reused for ``ttl_seconds``; after that the health endpoint
    is probed once per entry of ``timeouts``, stopping at the first success.
    Concurrent callers share one in-flight probe.
    """

    def __init__(
        self,
        api: ChatApi,
        *,
        clock: Clock | None = None,
        ttl_seconds: float = settings.AVAILABILITY_TTL_SECONDS,
        timeouts: Sequence[float] = tuple(settings.PROBE_TIMEOUTS),
        retry_delay: float = settings.PROBE_RETRY_DELAY,
    ) -> None:
        self._api = api
        self._clock = clock or SystemClock()
        self._ttl = ttl_seconds
        self._timeouts = tuple(timeouts)
        self._retry_delay = retry_delay
        self._snapshot: AvailabilitySnapshot | None = None
        self._lock = asyncio.Lock()
        self.probe_count = 0

    @property
    def snapshot(self) -> AvailabilitySnapshot | None:
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    async def is_reachable(self) -> bool:
        cached = self._cached()
        if cached is not None:
            return cached
        async with self._lock:
            # Another caller may have probed while we waited.
            cached = self._cached()
            if cached is not None:
                return cached
            reachable = await self._probe()
            self._snapshot = AvailabilitySnapshot(checked_at=self._clock.now(), reachable=reachable)
            return reachable

    def _cached(self) -> bool | None:
        snap = self._snapshot
        if snap is not None and snap.fresh(self._clock.now(), self._ttl):
            return snap.reachable
        return None

    async def _probe(self) -> bool:
        self.probe_count += 1
        for attempt, timeout in enumerate(self._timeouts, start=1):
            try:
                await self._api.health(timeout)
            except SyncError as exc:
                logger.info("Health probe attempt %d/%d failed: %s", attempt, len(self._timeouts), exc)
                if attempt < len(self._timeouts) and self._retry_delay > 0:
                    await asyncio.sleep(self._retry_delay)
                continue
            logger.debug("Backend reachable (attempt %d)", attempt)
            return True
        logger.warning("Backend unreachable after %d probe attempts", len(self._timeouts))
        return False
