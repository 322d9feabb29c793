from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True, slots=True)
class PendingReadOp:
    conversation_id: str
    created_at: datetime

    def expired(self, now: datetime, max_age: timedelta) -> bool:
        return now - self.created_at > max_age
