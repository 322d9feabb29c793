from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol

EventHandler = Callable[[Any], Coroutine[Any, Any, None]]


class LiveChannel(Protocol):
    """Push channel with its own capped-backoff reconnection.

    The pseudo-events ``connect`` and ``disconnect`` fire on every
    (re)connection and drop; their handlers receive ``None``.
    """

    @property
    def connected(self) -> bool: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    def off(self, event: str) -> None: ...

    async def connect(self) -> None: ...

    async def emit(self, event: str, data: Any) -> None: ...

    async def disconnect(self) -> None: ...
