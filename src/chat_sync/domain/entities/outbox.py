from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from chat_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class OutboxEntry:
    id: str
    conversation_id: str
    message: Message
    attempts: int
    created_at: datetime

    def exhausted(self, max_attempts: int) -> bool:
        return self.attempts >= max_attempts

    def bumped(self) -> OutboxEntry:
        return replace(self, attempts=self.attempts + 1)
