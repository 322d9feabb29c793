"""Bounded local snapshot of recent conversation history.

The snapshot lets a reopened conversation render before the backend
answers, and keeps history visible through outages. Writes are throttled,
bounded to the most recent messages and degrade under quota pressure;
nothing here ever raises to the caller.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Sequence

from chat_sync.application.exceptions import QuotaExceeded, StorageError
from chat_sync.application.ports.clock import Clock, SystemClock, seconds_since
from chat_sync.application.ports.store import (
    PersistentStore,
    count_key,
    messages_key,
    timestamp_key,
)
from chat_sync.config import settings
from chat_sync.domain.entities.message import Message
from chat_sync.infrastructure.mappers.message import (
    message_from_snapshot,
    message_to_snapshot,
    parse_timestamp,
)
from chat_sync.infrastructure.store.serializer import dump_value, load_value

logger = logging.getLogger(__name__)

_MESSAGES_PREFIX = "messages_"


class SnapshotCache:
    def __init__(
        self,
        store: PersistentStore,
        *,
        clock: Clock | None = None,
        window: int = settings.CACHE_WINDOW,
        fallback_windows: Sequence[int] = tuple(settings.CACHE_FALLBACK_WINDOWS),
        min_interval_seconds: float = settings.CACHE_MIN_INTERVAL_SECONDS,
        stale_hours: float = settings.CACHE_STALE_HOURS,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._windows = (window, *fallback_windows)
        self._min_interval = min_interval_seconds
        self._stale = timedelta(hours=stale_hours)
        self._tasks: set[asyncio.Task[bool]] = set()

    async def save(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        force: bool = False,
    ) -> bool:
        """Persist the tail of ``messages``; returns whether anything was written."""
        if not conversation_id or not messages:
            return False
        try:
            if not force and await self._recently_saved(conversation_id, len(messages)):
                return False
            records = [message_to_snapshot(m) for m in messages[-self._windows[0]:]]
            return await self._write_degrading(conversation_id, records)
        except StorageError as exc:
            logger.warning("Snapshot for %s not saved: %s", conversation_id, exc)
            return False

    def save_in_background(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        force: bool = False,
    ) -> asyncio.Task[bool]:
        task = asyncio.create_task(
            self.save(conversation_id, list(messages), force),
            name=f"snapshot-save-{conversation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for background saves started so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def load(self, conversation_id: str) -> list[Message] | None:
        if not conversation_id:
            return None
        try:
            raw = await self._store.get(messages_key(conversation_id))
        except StorageError as exc:
            logger.warning("Snapshot for %s unreadable: %s", conversation_id, exc)
            return None
        data = load_value(raw)
        if not isinstance(data, list) or not data:
            return None
        messages = [m for m in (message_from_snapshot(item, conversation_id) for item in data) if m]
        return messages or None

    async def last_saved_at(self, conversation_id: str) -> datetime | None:
        raw = await self._store.get(timestamp_key(conversation_id))
        return parse_timestamp(raw) if raw else None

    async def clear(self, conversation_id: str) -> None:
        for key in (messages_key(conversation_id), timestamp_key(conversation_id), count_key(conversation_id)):
            await self._store.delete(key)

    async def clear_all(self) -> int:
        conversation_ids = await self._cached_conversations()
        for conversation_id in conversation_ids:
            await self.clear(conversation_id)
        logger.info("Cleared %d conversation snapshots", len(conversation_ids))
        return len(conversation_ids)

    async def evict_stale(self, max_age: timedelta | None = None, exclude: str | None = None) -> int:
        """Drop snapshots not written within ``max_age``; returns how many."""
        max_age = max_age or self._stale
        evicted = 0
        for conversation_id in await self._cached_conversations():
            if conversation_id == exclude:
                continue
            saved_at = await self.last_saved_at(conversation_id)
            if saved_at is None or self._clock.now() - saved_at > max_age:
                await self.clear(conversation_id)
                evicted += 1
        if evicted:
            logger.info("Evicted %d stale conversation snapshots", evicted)
        return evicted

    async def _cached_conversations(self) -> list[str]:
        keys = await self._store.keys(_MESSAGES_PREFIX)
        return [key[len(_MESSAGES_PREFIX):] for key in keys]

    async def _recently_saved(self, conversation_id: str, incoming: int) -> bool:
        saved_at = await self.last_saved_at(conversation_id)
        if saved_at is None or seconds_since(self._clock, saved_at) >= self._min_interval:
            return False
        stored = await self._store.get(count_key(conversation_id))
        try:
            return stored is not None and int(stored) >= incoming
        except ValueError:
            return False

    async def _write_degrading(self, conversation_id: str, records: list[dict]) -> bool:
        for attempt, size in enumerate(self._windows):
            if attempt >= 2:
                # Last resort: make room by dropping other stale snapshots.
                await self.evict_stale(exclude=conversation_id)
            batch = records[-size:]
            try:
                await self._write(conversation_id, batch)
            except QuotaExceeded:
                logger.info(
                    "Quota exceeded saving %d messages for %s", len(batch), conversation_id,
                )
                continue
            if attempt:
                logger.warning(
                    "Snapshot for %s degraded to %d messages", conversation_id, len(batch),
                )
            return True
        logger.warning("Snapshot for %s dropped: storage quota exhausted", conversation_id)
        return False

    async def _write(self, conversation_id: str, batch: list[dict]) -> None:
        await self._store.set(messages_key(conversation_id), dump_value(batch))
        await self._store.set(timestamp_key(conversation_id), self._clock.now().isoformat())
        await self._store.set(count_key(conversation_id), str(len(batch)))
