"""Durable queue of messages that failed to send."""
from __future__ import annotations

import asyncio
import logging
import uuid

from chat_sync.application.dto.message import Delivery, OutgoingMessage
from chat_sync.application.exceptions import RETRYABLE_ERRORS, AuthRequired, RequestRejected
from chat_sync.application.ports.api import ChatApi
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.store import OUTBOX_KEY, PersistentStore
from chat_sync.config import settings
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.outbox import OutboxEntry
from chat_sync.infrastructure.mappers.outbox import entry_from_record, entry_to_record
from chat_sync.infrastructure.store.serializer import dump_value, load_value
from chat_sync.services.availability import AvailabilityProber

logger = logging.getLogger(__name__)


class Outbox:
    def __init__(
        self,
        store: PersistentStore,
        api: ChatApi,
        prober: AvailabilityProber,
        *,
        clock: Clock | None = None,
        max_attempts: int = settings.OUTBOX_MAX_ATTEMPTS,
    ) -> None:
        self._store = store
        self._api = api
        self._prober = prober
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts
        self._lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        # message id -> outcome of the send currently on the wire
        self._in_flight: dict[str, asyncio.Future[Message | None]] = {}

    async def entries(self, conversation_id: str | None = None) -> list[OutboxEntry]:
        entries = await self._load()
        if conversation_id is None:
            return entries
        return [e for e in entries if e.conversation_id == conversation_id]

    async def size(self) -> int:
        return len(await self._load())

    async def enqueue(self, message: Message, conversation_id: str) -> int:
        async with self._write_lock:
            entries = await self._load()
            entries.append(
                OutboxEntry(
                    id=uuid.uuid4().hex,
                    conversation_id=conversation_id,
                    message=message,
                    attempts=0,
                    created_at=self._clock.now(),
                )
            )
            await self._save(entries)
        logger.info("Queued message %s for %s (queue size %d)", message.id, conversation_id, len(entries))
        return len(entries)

    async def discard(self, message_id: str) -> bool:
        async with self._write_lock:
            entries = await self._load()
            kept = [e for e in entries if e.message.id != message_id]
            if len(kept) == len(entries):
                return False
            await self._save(kept)
            return True

    async def process_queue(self, conversation_id: str) -> list[Delivery]:
        """Retry queued sends of one conversation.

        Returns the deliveries the caller should reconcile into its list.
        Overlapping calls return immediately with nothing delivered.
        """
        if self._lock.locked():
            return []
        async with self._lock:
            if not await self._prober.is_reachable():
                logger.debug("Backend unreachable, outbox processing skipped")
                return []

            pending = await self.entries(conversation_id)
            if not pending:
                return []
            logger.info("Processing %d queued messages for %s", len(pending), conversation_id)

            deliveries: list[Delivery] = []
            for entry in pending:
                if entry.exhausted(self._max_attempts):
                    logger.warning(
                        "Queued message %s reached %d attempts, dropping",
                        entry.message.id, entry.attempts,
                    )
                    await self._remove(entry.id)
                    continue

                original, entry = entry, entry.bumped()
                if not await self._put(entry):
                    logger.debug("Queued message %s discarded before sending", entry.message.id)
                    continue
                outcome: asyncio.Future[Message | None] = asyncio.get_running_loop().create_future()
                self._in_flight[entry.message.id] = outcome
                confirmed: Message | None = None
                try:
                    confirmed = await self._api.send_message(OutgoingMessage.from_message(entry.message))
                except AuthRequired:
                    # no credential, nothing went out
                    await self._put(original)
                    raise
                except RETRYABLE_ERRORS as exc:
                    logger.info(
                        "Queued message %s failed (attempt %d/%d): %s",
                        entry.message.id, entry.attempts, self._max_attempts, exc,
                    )
                    if entry.exhausted(self._max_attempts):
                        logger.warning("Queued message %s out of attempts, dropping", entry.message.id)
                        await self._remove(entry.id)
                    continue
                except RequestRejected as exc:
                    logger.warning("Queued message %s rejected, dropping: %s", entry.message.id, exc)
                    await self._remove(entry.id)
                    continue
                finally:
                    del self._in_flight[entry.message.id]
                    outcome.set_result(confirmed)

                await self._remove(entry.id)
                deliveries.append(Delivery(original_id=entry.message.id, message=confirmed))

            if deliveries:
                logger.info("Delivered %d queued messages for %s", len(deliveries), conversation_id)
            return deliveries

    async def wait_in_flight(self, message_id: str) -> Message | None:
        """Wait out a queued send of ``message_id`` that is on the wire.

        Returns the confirmed message if that send landed, otherwise None.
        """
        outcome = self._in_flight.get(message_id)
        if outcome is None:
            return None
        return await asyncio.shield(outcome)

    async def _put(self, updated: OutboxEntry) -> bool:
        async with self._write_lock:
            entries = await self._load()
            if not any(e.id == updated.id for e in entries):
                return False
            await self._save([updated if e.id == updated.id else e for e in entries])
            return True

    async def _remove(self, entry_id: str) -> None:
        async with self._write_lock:
            entries = await self._load()
            await self._save([e for e in entries if e.id != entry_id])

    async def _load(self) -> list[OutboxEntry]:
        raw = load_value(await self._store.get(OUTBOX_KEY), default=[])
        if not isinstance(raw, list):
            return []
        return [e for e in (entry_from_record(item) for item in raw) if e is not None]

    async def _save(self, entries: list[OutboxEntry]) -> None:
        if entries:
            await self._store.set(OUTBOX_KEY, dump_value([entry_to_record(e) for e in entries]))
        else:
            await self._store.delete(OUTBOX_KEY)
