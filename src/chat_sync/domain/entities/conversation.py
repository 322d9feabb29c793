"""In-memory message window of the open conversation."""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageStatus

logger = logging.getLogger(__name__)

OnChange = Callable[[list[Message]], None]


class MessageList:
    """Ordered by insertion; ids are unique within the list."""

    def __init__(self, conversation_id: str, messages: Iterable[Message] = ()) -> None:
        self.conversation_id = conversation_id
        self._messages: list[Message] = []
        self._listeners: list[OnChange] = []
        for message in messages:
            if self.index_of(message.id) < 0:
                self._messages.append(message)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def snapshot(self) -> list[Message]:
        return list(self._messages)

    def subscribe(self, listener: OnChange) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def index_of(self, message_id: str) -> int:
        for idx, message in enumerate(self._messages):
            if message.id == message_id:
                return idx
        return -1

    def contains(self, message_id: str) -> bool:
        return self.index_of(message_id) >= 0

    def find(self, message_id: str) -> Message | None:
        idx = self.index_of(message_id)
        return self._messages[idx] if idx >= 0 else None

    def append(self, message: Message) -> bool:
        if self.contains(message.id):
            return False
        self._messages.append(message)
        self._notify()
        return True

    def replace(self, message_id: str, replacement: Message) -> bool:
        """Swap ``message_id`` for ``replacement`` at the same position.

        If ``replacement`` is already in the list under its own id (it arrived
        through another path first), the stale entry is dropped instead so the
        list never holds two copies of one logical message.
        """
        idx = self.index_of(message_id)
        if idx < 0:
            return False
        if replacement.id != message_id and self.contains(replacement.id):
            del self._messages[idx]
        else:
            self._messages[idx] = replacement
        self._notify()
        return True

    def reconcile(self, original_id: str, confirmed: Message) -> None:
        """Apply a server-confirmed message for a previously failed send."""
        if self.replace(original_id, confirmed):
            return
        self.append(confirmed)

    def set_status(self, message_id: str, status: MessageStatus) -> Message | None:
        idx = self.index_of(message_id)
        if idx < 0:
            return None
        current = self._messages[idx]
        updated = current.advanced_to(status)
        if updated is not current:
            self._messages[idx] = updated
            self._notify()
        return updated

    def remove(self, message_id: str) -> Message | None:
        idx = self.index_of(message_id)
        if idx < 0:
            return None
        message = self._messages.pop(idx)
        self._notify()
        return message

    def mark_read_by_peer(self, own_id: str) -> int:
        """Mark own delivered/sent messages read; returns how many changed."""
        changed = 0
        for idx, message in enumerate(self._messages):
            if message.sender.id != own_id:
                continue
            updated = message.advanced_to(MessageStatus.READ)
            if updated is not message:
                self._messages[idx] = updated
                changed += 1
        if changed:
            self._notify()
        return changed

    def _notify(self) -> None:
        current = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(current)
            except Exception:
                logger.exception("Message list listener failed")
