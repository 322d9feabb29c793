"""Debounced read receipts with a durable retry ledger."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from chat_sync.application.exceptions import (
    RETRYABLE_ERRORS,
    AuthRequired,
    RequestRejected,
    StorageError,
    SyncError,
)
from chat_sync.application.ports.api import ChatApi
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.store import PENDING_READ_OPS_KEY, PersistentStore
from chat_sync.config import settings
from chat_sync.domain.entities.read_state import PendingReadOp
from chat_sync.domain.value_objects.ids import is_local_conversation
from chat_sync.infrastructure.mappers.read_state import op_from_record, op_to_record
from chat_sync.infrastructure.store.serializer import dump_value, load_value
from chat_sync.services.availability import AvailabilityProber

logger = logging.getLogger(__name__)

ReadSignal = Callable[[str], Awaitable[None]]


class ReadReceiptCoalescer:
    """Collapses repeated "conversation read" signals.

    At most one mark per conversation is sent within ``debounce_seconds``.
    Marks that fail for connectivity or server reasons go to the pending
    ledger and are replayed by ``flush_pending``.
    """

    def __init__(
        self,
        store: PersistentStore,
        api: ChatApi,
        prober: AvailabilityProber,
        *,
        clock: Clock | None = None,
        debounce_seconds: float = settings.READ_DEBOUNCE_SECONDS,
        max_age_hours: float = settings.PENDING_READ_MAX_AGE_HOURS,
        emit_read: ReadSignal | None = None,
    ) -> None:
        self._store = store
        self._api = api
        self._prober = prober
        self._clock = clock or SystemClock()
        self._debounce = debounce_seconds
        self._max_age = timedelta(hours=max_age_hours)
        self._emit_read = emit_read
        self._last_marked: dict[str, datetime] = {}
        self._flush_lock = asyncio.Lock()

    def attach_signal(self, emit_read: ReadSignal | None) -> None:
        self._emit_read = emit_read

    def last_marked_at(self, conversation_id: str) -> datetime | None:
        return self._last_marked.get(conversation_id)

    async def mark_read(self, conversation_id: str) -> bool:
        """Returns True when the backend accepted a mark during this call."""
        if not conversation_id or is_local_conversation(conversation_id):
            return False

        now = self._clock.now()
        last = self._last_marked.get(conversation_id)
        if last is not None and (now - last).total_seconds() < self._debounce:
            return False
        self._last_marked[conversation_id] = now

        try:
            await self._api.mark_read(conversation_id)
        except RETRYABLE_ERRORS as exc:
            logger.info("Mark-read for %s deferred: %s", conversation_id, exc)
            await self._remember(conversation_id)
            return False
        except AuthRequired:
            self._last_marked.pop(conversation_id, None)
            raise
        except RequestRejected as exc:
            logger.warning("Mark-read for %s rejected: %s", conversation_id, exc)
            return False

        await self._signal(conversation_id)
        return True

    async def pending(self) -> list[PendingReadOp]:
        return await self._load()

    async def flush_pending(self) -> int:
        """Replay the ledger; returns how many marks went through."""
        if self._flush_lock.locked():
            return 0
        async with self._flush_lock:
            ops = await self._load()
            if not ops:
                return 0

            now = self._clock.now()
            resolved: set[tuple[str, datetime]] = set()
            live: list[PendingReadOp] = []
            for op in ops:
                if op.expired(now, self._max_age):
                    logger.info("Dropping read op for %s older than %s", op.conversation_id, self._max_age)
                    resolved.add((op.conversation_id, op.created_at))
                else:
                    live.append(op)

            replayed = 0
            try:
                if live and await self._prober.is_reachable():
                    for op in live:
                        try:
                            await self._api.mark_read(op.conversation_id)
                        except RequestRejected as exc:
                            logger.warning("Read op for %s rejected, dropping: %s", op.conversation_id, exc)
                            resolved.add((op.conversation_id, op.created_at))
                            continue
                        except RETRYABLE_ERRORS as exc:
                            logger.info("Read op for %s still failing: %s", op.conversation_id, exc)
                            continue
                        resolved.add((op.conversation_id, op.created_at))
                        self._last_marked[op.conversation_id] = self._clock.now()
                        replayed += 1
                        await self._signal(op.conversation_id)
            finally:
                if resolved:
                    await self._forget(resolved)

            if replayed:
                logger.info("Replayed %d pending read ops", replayed)
            return replayed

    async def _remember(self, conversation_id: str) -> None:
        try:
            ops = await self._load()
            if any(op.conversation_id == conversation_id for op in ops):
                return
            ops.append(PendingReadOp(conversation_id=conversation_id, created_at=self._clock.now()))
            await self._save(ops)
        except StorageError as exc:
            logger.warning("Could not record pending read op for %s: %s", conversation_id, exc)

    async def _forget(self, resolved: set[tuple[str, datetime]]) -> None:
        # Re-read so ops recorded while flushing survive.
        current = await self._load()
        await self._save([op for op in current if (op.conversation_id, op.created_at) not in resolved])

    async def _signal(self, conversation_id: str) -> None:
        if self._emit_read is None:
            return
        try:
            await self._emit_read(conversation_id)
        except SyncError as exc:
            logger.debug("Read signal for %s not sent: %s", conversation_id, exc)

    async def _load(self) -> list[PendingReadOp]:
        raw = load_value(await self._store.get(PENDING_READ_OPS_KEY), default=[])
        if not isinstance(raw, list):
            return []
        return [op for op in (op_from_record(item) for item in raw) if op is not None]

    async def _save(self, ops: list[PendingReadOp]) -> None:
        if ops:
            await self._store.set(PENDING_READ_OPS_KEY, dump_value([op_to_record(op) for op in ops]))
        else:
            await self._store.delete(PENDING_READ_OPS_KEY)
