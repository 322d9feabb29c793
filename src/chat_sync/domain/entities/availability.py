from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class AvailabilitySnapshot:
    checked_at: datetime
    reachable: bool

    def fresh(self, now: datetime, ttl_seconds: float) -> bool:
        return (now - self.checked_at).total_seconds() < ttl_seconds
