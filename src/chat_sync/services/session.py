"""Owner of one open conversation.

Builds the prober, cache, outbox, read-receipt coalescer, send pipeline and
live-channel reconciler around a shared MessageList, and tears all of them
down together. Every timer and background task of the conversation is
started here and cancelled by ``close``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence

from chat_sync.application.exceptions import AuthRequired, ValidationError
from chat_sync.application.liveness import Liveness
from chat_sync.application.ports.api import ChatApi
from chat_sync.application.ports.channel import LiveChannel
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.store import PersistentStore
from chat_sync.application.ports.uploader import AttachmentUploader
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import MessageList, OnChange
from chat_sync.domain.entities.message import Attachment, Message
from chat_sync.domain.value_objects.identity import Identity
from chat_sync.services.availability import AvailabilityProber
from chat_sync.services.outbox import Outbox
from chat_sync.services.read_receipts import ReadReceiptCoalescer
from chat_sync.services.reconciler import LiveChannelReconciler, OnPeerTyping
from chat_sync.services.send_pipeline import OptimisticSendPipeline
from chat_sync.services.snapshot_cache import SnapshotCache
from chat_sync.workers.sync_worker import run_sync_worker

logger = logging.getLogger(__name__)

OnAuthRequired = Callable[[AuthRequired], None]


class ConversationSession:
    def __init__(
        self,
        conversation_id: str,
        identity: Identity,
        *,
        api: ChatApi,
        store: PersistentStore,
        channel: LiveChannel,
        uploader: AttachmentUploader | None = None,
        clock: Clock | None = None,
        prober: AvailabilityProber | None = None,
        on_change: OnChange | None = None,
        on_auth_required: OnAuthRequired | None = None,
        on_peer_typing: OnPeerTyping | None = None,
        poll_interval: float = settings.OUTBOX_POLL_INTERVAL,
        typing_idle_seconds: float = settings.TYPING_IDLE_SECONDS,
    ) -> None:
        if not conversation_id:
            raise ValidationError("conversation id is required")
        self.conversation_id = conversation_id
        self.identity = identity
        self._clock = clock or SystemClock()
        self._uploader = uploader
        self._on_change = on_change
        self._on_auth_required = on_auth_required
        self._poll_interval = poll_interval
        self._typing_idle = typing_idle_seconds

        self.liveness = Liveness()
        self.messages = MessageList(conversation_id)
        self.prober = prober or AvailabilityProber(api, clock=self._clock)
        self.cache = SnapshotCache(store, clock=self._clock)
        self.outbox = Outbox(store, api, self.prober, clock=self._clock)
        self.coalescer = ReadReceiptCoalescer(store, api, self.prober, clock=self._clock)
        self.pipeline = OptimisticSendPipeline(
            self.messages, identity, api, self.prober, self.outbox, self.cache,
            clock=self._clock, liveness=self.liveness,
        )
        self.reconciler = LiveChannelReconciler(
            channel, self.messages, identity, self.cache, self.coalescer,
            prober=self.prober,
            outbox=self.outbox,
            liveness=self.liveness,
            on_connected=self._on_channel_connected,
            on_auth_required=self._auth_required,
            on_peer_typing=on_peer_typing,
        )
        self.coalescer.attach_signal(self.reconciler.emit_read)

        self._tasks: set[asyncio.Task[Any]] = set()
        self._worker: asyncio.Task[None] | None = None
        self._typing_timer: asyncio.Task[None] | None = None
        self._typing = False
        self._unsubscribe: Callable[[], None] | None = None
        self._opened = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def peer_typing(self) -> bool:
        return self.reconciler.peer_typing

    async def open(self) -> None:
        if self._opened:
            return
        self._opened = True

        cached = await self.cache.load(self.conversation_id)
        if cached:
            for message in cached:
                self.messages.append(message)
            logger.info("Restored %d cached messages for %s", len(cached), self.conversation_id)
        if self._on_change is not None:
            self._unsubscribe = self.messages.subscribe(self._on_change)
            self._on_change(self.messages.snapshot())

        await self.reconciler.start()
        self._worker = asyncio.create_task(
            run_sync_worker(self._sync_guarded, self.liveness, interval=self._poll_interval),
            name=f"sync-worker-{self.conversation_id}",
        )
        self._spawn(self._catch_up())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.liveness.cancel()

        pending = [t for t in (self._worker, self._typing_timer, *self._tasks) if t is not None]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        await self.reconciler.close()
        if self._unsubscribe is not None:
            self._unsubscribe()
        await self.cache.drain()
        if len(self.messages):
            await self.cache.save(self.conversation_id, self.messages.snapshot(), force=True)
        logger.info("Session for %s closed", self.conversation_id)

    async def __aenter__(self) -> ConversationSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def send(
        self,
        content: str | None = None,
        *,
        attachments: Sequence[Attachment] = (),
        files: Sequence[Any] = (),
    ) -> Message:
        self._ensure_open()
        attachments = list(attachments)
        if files:
            if self._uploader is None:
                raise ValidationError("no attachment uploader configured")
            attachments.extend(await self._uploader.upload(files))
            self._ensure_open()
        await self._stop_typing()
        return await self.pipeline.send(self.conversation_id, content, attachments)

    async def retry(self, message_id: str) -> Message:
        self._ensure_open()
        return await self.pipeline.retry(message_id)

    async def mark_read(self) -> bool:
        self._ensure_open()
        return await self.coalescer.mark_read(self.conversation_id)

    async def sync_pending(self) -> int:
        """Replay queued sends and read marks; returns how many sends landed."""
        deliveries = await self.outbox.process_queue(self.conversation_id)
        if not self.liveness.alive:
            return 0
        for delivery in deliveries:
            self.messages.reconcile(delivery.original_id, delivery.message)
        if deliveries:
            self.cache.save_in_background(self.conversation_id, self.messages.snapshot(), force=True)
        await self.coalescer.flush_pending()
        return len(deliveries)

    async def notify_typing(self) -> None:
        """Call on every keystroke; stop-typing goes out after the idle period."""
        self._ensure_open()
        if not self._typing:
            self._typing = True
            await self.reconciler.emit_typing(True)
        if self._typing_timer is not None:
            self._typing_timer.cancel()
        self._typing_timer = asyncio.create_task(self._typing_idle_timeout())

    def on_visibility_changed(self, visible: bool) -> None:
        if not visible or self._closed:
            return
        self._spawn(self._catch_up())

    async def _catch_up(self) -> None:
        await self._sync_guarded()
        if self.liveness.alive:
            await self.coalescer.mark_read(self.conversation_id)

    async def _sync_guarded(self) -> None:
        try:
            await self.sync_pending()
        except AuthRequired as exc:
            self._auth_required(exc)

    async def _on_channel_connected(self) -> None:
        self._spawn(self._sync_guarded())

    async def _typing_idle_timeout(self) -> None:
        await asyncio.sleep(self._typing_idle)
        if self.liveness.alive:
            await self._stop_typing()

    async def _stop_typing(self) -> None:
        if not self._typing:
            return
        self._typing = False
        await self.reconciler.emit_typing(False)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(self._guard(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, coro: Awaitable[Any]) -> None:
        try:
            await coro
        except AuthRequired as exc:
            self._auth_required(exc)
        except Exception:
            logger.exception("Background task failed for %s", self.conversation_id)

    def _auth_required(self, exc: AuthRequired) -> None:
        if not self.liveness.alive:
            return
        logger.warning("Authentication required for %s: %s", self.conversation_id, exc)
        if self._on_auth_required is not None:
            self._on_auth_required(exc)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ValidationError(f"session for {self.conversation_id} is closed")
