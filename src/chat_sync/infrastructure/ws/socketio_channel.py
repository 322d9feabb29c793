"""Socket.IO implementation of the live channel."""
from __future__ import annotations

import logging
from typing import Any

import socketio

from chat_sync.application.exceptions import Unreachable
from chat_sync.application.ports.channel import EventHandler
from chat_sync.config import settings
from chat_sync.infrastructure.ws.protocol import INBOUND_EVENTS

logger = logging.getLogger(__name__)


class SocketIOChannel:
    """Implements application.ports.channel.LiveChannel.

    Reconnection after a dropped connection is left to the Socket.IO client,
    bounded by ``reconnection_attempts`` with backoff capped at
    ``reconnection_delay_max``. Handlers are dispatched through a fixed
    table so ``off`` detaches them without touching the client.
    """

    def __init__(
        self,
        url: str = settings.SOCKET_URL,
        *,
        path: str = settings.SOCKET_PATH,
        auth: dict[str, Any] | None = None,
        reconnection_attempts: int = settings.SOCKET_RECONNECT_ATTEMPTS,
        reconnection_delay: float = settings.SOCKET_RECONNECT_DELAY,
        reconnection_delay_max: float = settings.SOCKET_RECONNECT_DELAY_MAX,
        connect_timeout: float = settings.SOCKET_CONNECT_TIMEOUT,
        client: socketio.AsyncClient | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._path = path.strip("/")
        self._auth = auth
        self._connect_timeout = connect_timeout
        self._handlers: dict[str, EventHandler] = {}
        self._client = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=reconnection_attempts,
            reconnection_delay=reconnection_delay,
            reconnection_delay_max=reconnection_delay_max,
            logger=False,
            engineio_logger=False,
        )
        for event in ("connect", "disconnect", *INBOUND_EVENTS):
            self._client.on(event, self._dispatcher(event))
        self._client.on("connect_error", self._on_connect_error)

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event] = handler

    def off(self, event: str) -> None:
        self._handlers.pop(event, None)

    async def connect(self) -> None:
        try:
            await self._client.connect(
                self._url,
                transports=["websocket", "polling"],
                socketio_path=self._path,
                auth=self._auth,
                wait_timeout=self._connect_timeout,
            )
        except socketio.exceptions.ConnectionError as exc:
            raise Unreachable(f"live channel: {exc}") from exc
        logger.info("Live channel connected to %s", self._url)

    async def emit(self, event: str, data: Any) -> None:
        if not self.connected:
            raise Unreachable(f"live channel not connected, dropped {event!r}")
        try:
            await self._client.emit(event, data)
        except socketio.exceptions.SocketIOError as exc:
            raise Unreachable(f"live channel emit {event!r}: {exc}") from exc

    async def disconnect(self) -> None:
        self._handlers.clear()
        await self._client.disconnect()
        logger.info("Live channel closed")

    def _dispatcher(self, event: str) -> EventHandler:
        async def dispatch(*args: Any) -> None:
            handler = self._handlers.get(event)
            if handler is None:
                return
            payload = args[0] if args and event not in ("connect", "disconnect") else None
            try:
                await handler(payload)
            except Exception:
                logger.exception("Live channel handler for %r failed", event)

        return dispatch

    async def _on_connect_error(self, data: Any = None) -> None:
        logger.warning("Live channel connect error: %s", data)
