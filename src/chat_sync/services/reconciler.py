"""Live-channel lifecycle and inbound event reconciliation.

Inbound events are applied to the shared MessageList only when they belong
to the open conversation and are not already present; dedupe by message id
is what makes redelivered events harmless.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PayloadError

from chat_sync.application.exceptions import AuthRequired, StorageError, Unreachable
from chat_sync.application.liveness import Liveness
from chat_sync.application.ports.channel import EventHandler, LiveChannel
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import MessageList
from chat_sync.domain.value_objects.enums import ApplyOutcome
from chat_sync.domain.value_objects.identity import Identity
from chat_sync.infrastructure.mappers.message import message_from_wire
from chat_sync.infrastructure.ws import protocol
from chat_sync.infrastructure.ws.protocol import ConversationSignal, MessagesMarkedRead, TypingEvent
from chat_sync.services.availability import AvailabilityProber
from chat_sync.services.outbox import Outbox
from chat_sync.services.read_receipts import ReadReceiptCoalescer
from chat_sync.services.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)

OnConnected = Callable[[], Awaitable[None]]
OnAuthRequired = Callable[[AuthRequired], None]
OnPeerTyping = Callable[[bool], None]


class LiveChannelReconciler:
    def __init__(
        self,
        channel: LiveChannel,
        messages: MessageList,
        identity: Identity,
        cache: SnapshotCache,
        coalescer: ReadReceiptCoalescer,
        *,
        prober: AvailabilityProber | None = None,
        outbox: Outbox | None = None,
        liveness: Liveness | None = None,
        on_connected: OnConnected | None = None,
        on_auth_required: OnAuthRequired | None = None,
        on_peer_typing: OnPeerTyping | None = None,
        connect_attempts: int = settings.SOCKET_RECONNECT_ATTEMPTS,
        connect_delay: float = settings.SOCKET_RECONNECT_DELAY,
        connect_delay_max: float = settings.SOCKET_RECONNECT_DELAY_MAX,
    ) -> None:
        self._channel = channel
        self._messages = messages
        self._identity = identity
        self._cache = cache
        self._coalescer = coalescer
        self._prober = prober
        self._outbox = outbox
        self._liveness = liveness or Liveness()
        self._on_connected = on_connected
        self._on_auth_required = on_auth_required
        self._on_peer_typing = on_peer_typing
        self._connect_attempts = connect_attempts
        self._connect_delay = connect_delay
        self._connect_delay_max = connect_delay_max
        self._connect_task: asyncio.Task[None] | None = None
        self._handlers: dict[str, EventHandler] = {
            "connect": self._handle_connect,
            "disconnect": self._handle_disconnect,
            protocol.MESSAGE_RECEIVED: self._handle_message,
            protocol.MESSAGES_MARKED_READ: self._handle_read,
            protocol.TYPING: self._handle_typing,
            protocol.STOP_TYPING: self._handle_stop_typing,
        }
        self.peer_typing = False

    @property
    def conversation_id(self) -> str:
        return self._messages.conversation_id

    @property
    def connected(self) -> bool:
        return self._channel.connected

    async def start(self) -> None:
        for event, handler in self._handlers.items():
            self._channel.on(event, self._guarded(handler))
        try:
            await self._channel.connect()
        except Unreachable as exc:
            logger.warning("Live channel unavailable, retrying in background: %s", exc)
            self._connect_task = asyncio.create_task(
                self._connect_with_backoff(), name=f"live-channel-connect-{self.conversation_id}",
            )

    async def close(self) -> None:
        if self._connect_task is not None:
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
            self._connect_task = None
        for event in self._handlers:
            self._channel.off(event)
        try:
            await self._channel.disconnect()
        except Exception:
            logger.exception("Error closing live channel")

    # ---- inbound ---------------------------------------------------------

    async def apply_message(self, payload: Any) -> ApplyOutcome:
        message = message_from_wire(payload)
        if message is None or message.conversation_id != self.conversation_id:
            return ApplyOutcome.OUT_OF_SCOPE
        if self._messages.contains(message.id):
            return ApplyOutcome.DUPLICATE

        client_msg_id = payload.get("clientMsgId") if isinstance(payload, dict) else None
        if client_msg_id and self._messages.contains(str(client_msg_id)):
            # Echo of our own send that beat the HTTP response.
            self._messages.replace(str(client_msg_id), message)
            await self._drop_queued(str(client_msg_id))
        else:
            self._messages.append(message)
        self._cache.save_in_background(self.conversation_id, self._messages.snapshot())

        try:
            await self._coalescer.mark_read(self.conversation_id)
        except AuthRequired as exc:
            self._auth_required(exc)
        return ApplyOutcome.APPLIED

    def apply_read(self, payload: Any) -> int:
        """Returns how many own messages turned read."""
        try:
            event = MessagesMarkedRead.model_validate(payload)
        except PayloadError:
            logger.debug("Ignoring malformed read event: %r", payload)
            return 0
        if event.conversation_id != self.conversation_id:
            return 0
        # Two-party assumption: any reader other than us is the peer.
        if not event.read_by or event.read_by == self._identity.id:
            return 0
        changed = self._messages.mark_read_by_peer(self._identity.id)
        if changed:
            self._cache.save_in_background(self.conversation_id, self._messages.snapshot(), force=True)
        return changed

    # ---- outbound --------------------------------------------------------

    async def emit_read(self, conversation_id: str) -> None:
        signal = ConversationSignal(conversation_id=conversation_id, user_id=self._identity.id)
        await self._channel.emit(protocol.MESSAGE_READ, signal.payload())

    async def emit_typing(self, typing: bool) -> None:
        signal = ConversationSignal(conversation_id=self.conversation_id, user_id=self._identity.id)
        event = protocol.TYPING if typing else protocol.STOP_TYPING
        try:
            await self._channel.emit(event, signal.payload())
        except Unreachable as exc:
            logger.debug("Typing signal dropped: %s", exc)

    # ---- handlers --------------------------------------------------------

    def _guarded(self, handler: EventHandler) -> EventHandler:
        async def run(payload: Any) -> None:
            if not self._liveness.alive:
                return
            await handler(payload)

        return run

    async def _handle_connect(self, _payload: Any) -> None:
        logger.info("Live channel up, joining %s", self.conversation_id)
        try:
            await self._channel.emit(protocol.SETUP, {"_id": self._identity.id, "name": self._identity.name})
            await self._channel.emit(protocol.JOIN_CONVERSATION, self.conversation_id)
        except Unreachable as exc:
            logger.warning("Live channel setup failed: %s", exc)
            return
        if self._prober is not None:
            self._prober.invalidate()
        if self._on_connected is not None and self._liveness.alive:
            await self._on_connected()

    async def _handle_disconnect(self, _payload: Any) -> None:
        logger.warning("Live channel disconnected from %s", self.conversation_id)
        self._set_peer_typing(False)

    async def _handle_message(self, payload: Any) -> None:
        outcome = await self.apply_message(payload)
        if outcome is not ApplyOutcome.APPLIED:
            logger.debug("Inbound message %s", outcome)

    async def _handle_read(self, payload: Any) -> None:
        self.apply_read(payload)

    async def _handle_typing(self, payload: Any) -> None:
        self._apply_typing(payload, True)

    async def _handle_stop_typing(self, payload: Any) -> None:
        self._apply_typing(payload, False)

    def _apply_typing(self, payload: Any, typing: bool) -> None:
        try:
            event = TypingEvent.parse(payload)
        except PayloadError:
            return
        if event.conversation_id != self.conversation_id or event.user_id == self._identity.id:
            return
        self._set_peer_typing(typing)

    def _set_peer_typing(self, typing: bool) -> None:
        if typing == self.peer_typing:
            return
        self.peer_typing = typing
        if self._on_peer_typing is not None:
            self._on_peer_typing(typing)

    async def _drop_queued(self, message_id: str) -> None:
        if self._outbox is None:
            return
        try:
            if await self._outbox.discard(message_id):
                logger.info("Echo confirmed queued message %s, dropped from outbox", message_id)
        except StorageError as exc:
            logger.warning("Could not drop %s from outbox: %s", message_id, exc)

    def _auth_required(self, exc: AuthRequired) -> None:
        logger.warning("Credential rejected while reconciling: %s", exc)
        if self._on_auth_required is not None:
            self._on_auth_required(exc)

    async def _connect_with_backoff(self) -> None:
        for attempt in range(1, self._connect_attempts + 1):
            delay = min(self._connect_delay * (2 ** (attempt - 1)), self._connect_delay_max)
            await asyncio.sleep(delay)
            if not self._liveness.alive:
                return
            try:
                await self._channel.connect()
            except Unreachable as exc:
                logger.info("Live channel connect attempt %d/%d failed: %s", attempt, self._connect_attempts, exc)
                continue
            return
        logger.error("Live channel gave up after %d attempts", self._connect_attempts)
