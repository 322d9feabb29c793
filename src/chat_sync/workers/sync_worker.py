"""Sync worker: periodically replays the outbox and pending read marks."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from chat_sync.application.liveness import Liveness
from chat_sync.config import settings

logger = logging.getLogger(__name__)


async def run_sync_worker(
    sync: Callable[[], Awaitable[object]],
    liveness: Liveness,
    *,
    interval: float = settings.OUTBOX_POLL_INTERVAL,
) -> None:
    logger.info("Sync worker started (poll=%.1fs)", interval)
    while liveness.alive:
        await asyncio.sleep(interval)
        if not liveness.alive:
            break
        try:
            await sync()
        except Exception:
            logger.exception("Sync worker loop error")
    logger.info("Sync worker stopped")
