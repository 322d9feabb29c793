"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import fnmatch
import itertools
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable

import pytest
from redis.exceptions import ResponseError

from chat_sync.application.dto.message import OutgoingMessage
from chat_sync.application.exceptions import QuotaExceeded, Unreachable
from chat_sync.application.ports.channel import EventHandler
from chat_sync.domain.entities.message import Attachment, Message
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.identity import Identity
from chat_sync.infrastructure.store.memory import InMemoryStore
from chat_sync.services.availability import AvailabilityProber

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
CONVERSATION = "conv-1"
ME = Identity(id="user-me", name="Me")
PEER = Identity(id="user-peer", name="Peer")


def make_message(
    *,
    message_id: str | None = None,
    conversation_id: str = CONVERSATION,
    sender: Identity = PEER,
    content: str = "hello",
    status: MessageStatus = MessageStatus.SENT,
    timestamp: datetime = T0,
) -> Message:
    return Message(
        id=message_id or f"m-{next(_ids)}",
        conversation_id=conversation_id,
        sender=sender,
        content=content,
        timestamp=timestamp,
        status=status,
    )


def make_messages(count: int, **kwargs: Any) -> list[Message]:
    return [
        make_message(content=f"message {i}", timestamp=T0 + timedelta(seconds=i), **kwargs)
        for i in range(count)
    ]


def wire_message(message_id: str, *, conversation_id: str = CONVERSATION, sender: Identity = PEER, **extra: Any) -> dict[str, Any]:
    return {
        "_id": message_id,
        "conversationId": conversation_id,
        "sender": {"_id": sender.id, "name": sender.name},
        "content": "from the wire",
        "timestamp": T0.isoformat(),
        **extra,
    }


_ids = itertools.count(1)


@dataclass
class FakeClock:
    current: datetime = T0

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


@dataclass
class FakeApi:
    """Scriptable backend: queued errors are raised by the next matching call."""

    reachable: bool = True
    send_errors: list[Exception] = field(default_factory=list)
    mark_errors: list[Exception] = field(default_factory=list)
    health_calls: list[float] = field(default_factory=list)
    sent: list[OutgoingMessage] = field(default_factory=list)
    marked: list[str] = field(default_factory=list)
    before_reply: Callable[[Message], Awaitable[None]] | None = None
    send_gate: asyncio.Event | None = None
    _next_id: itertools.count = field(default_factory=lambda: itertools.count(1))

    async def health(self, timeout: float) -> None:
        self.health_calls.append(timeout)
        if not self.reachable:
            raise Unreachable("health: connection refused")

    async def mark_read(self, conversation_id: str) -> None:
        self.marked.append(conversation_id)
        if self.mark_errors:
            raise self.mark_errors.pop(0)

    async def send_message(self, outgoing: OutgoingMessage) -> Message:
        self.sent.append(outgoing)
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_errors:
            raise self.send_errors.pop(0)
        confirmed = Message(
            id=f"srv-{next(self._next_id)}",
            conversation_id=outgoing.conversation_id,
            sender=ME,
            content=outgoing.content,
            timestamp=T0,
            status=MessageStatus.SENT,
            attachments=outgoing.attachments,
        )
        if self.before_reply is not None:
            await self.before_reply(confirmed)
        return confirmed


@dataclass
class FakeChannel:
    connected: bool = False
    handlers: dict[str, EventHandler] = field(default_factory=dict)
    emitted: list[tuple[str, Any]] = field(default_factory=list)
    connect_errors: list[Exception] = field(default_factory=list)
    connect_calls: int = 0
    disconnects: int = 0

    def on(self, event: str, handler: EventHandler) -> None:
        self.handlers[event] = handler

    def off(self, event: str) -> None:
        self.handlers.pop(event, None)

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        self.connected = True
        await self.fire("connect")

    async def emit(self, event: str, data: Any) -> None:
        if not self.connected:
            raise Unreachable(f"emit {event}: not connected")
        self.emitted.append((event, data))

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnects += 1

    async def fire(self, event: str, payload: Any = None) -> None:
        handler = self.handlers.get(event)
        if handler is not None:
            await handler(payload)

    def events(self, name: str) -> list[Any]:
        return [data for event, data in self.emitted if event == name]


@dataclass
class FakeUploader:
    uploaded: list[Any] = field(default_factory=list)

    async def upload(self, files: Any) -> list[Attachment]:
        self.uploaded.extend(files)
        return [Attachment(url=f"https://files.test/{name}", mime_type="image/png", name=name) for name in files]


class SnapshotQuotaStore(InMemoryStore):
    """Rejects snapshot writes holding more than ``max_messages`` messages."""

    def __init__(self, max_messages: int) -> None:
        super().__init__()
        self.max_messages = max_messages
        self.rejected: list[int] = []

    async def set(self, key: str, value: str) -> None:
        if key.startswith("messages_"):
            size = len(json.loads(value))
            if size > self.max_messages:
                self.rejected.append(size)
                raise QuotaExceeded(f"{key}: {size} messages do not fit")
        await super().set(key, value)


@dataclass
class FakeRedis:
    """The slice of redis.asyncio.Redis the store uses."""

    data: dict[str, str] = field(default_factory=dict)
    fail_with: Exception | None = None
    closed: bool = False

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._check()
        self.data[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    async def scan_iter(self, match: str = "*") -> AsyncIterator[str]:
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        self.closed = True


def oom_error() -> ResponseError:
    return ResponseError("OOM command not allowed when used memory > 'maxmemory'.")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def prober(api: FakeApi, clock: FakeClock) -> AvailabilityProber:
    return AvailabilityProber(api, clock=clock, retry_delay=0)
