from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.identity import Identity
from chat_sync.domain.value_objects.ids import is_temp_id


@dataclass(frozen=True, slots=True)
class Attachment:
    url: str
    mime_type: str = "unknown"
    size: int | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    conversation_id: str
    sender: Identity
    content: str | None
    timestamp: datetime
    status: MessageStatus = MessageStatus.SENT
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)

    @property
    def is_placeholder(self) -> bool:
        return is_temp_id(self.id)

    def advanced_to(self, status: MessageStatus) -> Message:
        """Return a copy in ``status``; illegal transitions leave it unchanged."""
        if status == self.status or not self.status.can_become(status):
            return self
        return replace(self, status=status)
