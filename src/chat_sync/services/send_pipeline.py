from __future__ import annotations

import logging
from typing import Sequence

from chat_sync.application.dto.message import OutgoingMessage
from chat_sync.application.exceptions import (
    RETRYABLE_ERRORS,
    AuthRequired,
    RequestRejected,
    StorageError,
    ValidationError,
)
from chat_sync.application.liveness import Liveness
from chat_sync.application.ports.api import ChatApi
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.domain.entities.conversation import MessageList
from chat_sync.domain.entities.message import Attachment, Message
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.identity import Identity
from chat_sync.domain.value_objects.ids import new_temp_id
from chat_sync.services.availability import AvailabilityProber
from chat_sync.services.outbox import Outbox
from chat_sync.services.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


class OptimisticSendPipeline:
    """Shows a message immediately, then confirms it or parks it in the outbox."""

    def __init__(
        self,
        messages: MessageList,
        identity: Identity,
        api: ChatApi,
        prober: AvailabilityProber,
        outbox: Outbox,
        cache: SnapshotCache,
        *,
        clock: Clock | None = None,
        liveness: Liveness | None = None,
    ) -> None:
        self._messages = messages
        self._identity = identity
        self._api = api
        self._prober = prober
        self._outbox = outbox
        self._cache = cache
        self._clock = clock or SystemClock()
        self._liveness = liveness or Liveness()

    async def send(
        self,
        conversation_id: str,
        content: str | None,
        attachments: Sequence[Attachment] = (),
    ) -> Message:
        """Returns the message as it stands in the list once the send settles.

        Raises AuthRequired after marking the placeholder failed.
        """
        if conversation_id != self._messages.conversation_id:
            raise ValidationError(f"session is bound to {self._messages.conversation_id}")
        if not (content or "").strip() and not attachments:
            raise ValidationError("message has neither content nor attachments")

        placeholder = Message(
            id=new_temp_id(),
            conversation_id=conversation_id,
            sender=self._identity,
            content=content,
            timestamp=self._clock.now(),
            status=MessageStatus.PENDING,
            attachments=tuple(attachments),
        )
        self._messages.append(placeholder)
        self._persist()

        if not await self._prober.is_reachable():
            logger.info("Backend unreachable, queueing %s", placeholder.id)
            return await self._fail(placeholder, queue=True)

        try:
            confirmed = await self._api.send_message(OutgoingMessage.from_message(placeholder))
        except RETRYABLE_ERRORS as exc:
            logger.info("Send of %s failed, queueing: %s", placeholder.id, exc)
            return await self._fail(placeholder, queue=True)
        except RequestRejected as exc:
            logger.warning("Send of %s rejected: %s", placeholder.id, exc)
            return await self._fail(placeholder, queue=False)
        except AuthRequired:
            await self._fail(placeholder, queue=False)
            raise

        if not self._liveness.alive:
            return confirmed
        self._messages.replace(placeholder.id, confirmed)
        self._persist(force=True)
        logger.debug("Placeholder %s confirmed as %s", placeholder.id, confirmed.id)
        return confirmed

    async def retry(self, message_id: str) -> Message:
        """Resend a failed message under a new temporary id.

        If a queued send of the same message is already on the wire, its
        outcome is awaited first and a landed send is adopted instead.
        """
        failed = self._messages.find(message_id)
        if failed is None or failed.status != MessageStatus.FAILED:
            raise ValidationError(f"no failed message {message_id}")
        await self._outbox.discard(message_id)
        landed = await self._outbox.wait_in_flight(message_id)
        if landed is not None:
            logger.info("Queued send of %s landed as %s, not resending", message_id, landed.id)
            if self._liveness.alive:
                self._messages.reconcile(message_id, landed)
                self._persist(force=True)
            return landed
        self._messages.remove(message_id)
        return await self.send(failed.conversation_id, failed.content, failed.attachments)

    async def _fail(self, placeholder: Message, *, queue: bool) -> Message:
        failed = placeholder.advanced_to(MessageStatus.FAILED)
        if not self._liveness.alive:
            return failed
        failed = self._messages.set_status(placeholder.id, MessageStatus.FAILED) or failed
        if queue:
            try:
                await self._outbox.enqueue(failed, failed.conversation_id)
            except StorageError as exc:
                logger.warning("Could not queue %s, manual retry only: %s", failed.id, exc)
        self._persist(force=True)
        return failed

    def _persist(self, force: bool = False) -> None:
        self._cache.save_in_background(
            self._messages.conversation_id, self._messages.snapshot(), force=force,
        )
