from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.message import OutgoingMessage
from chat_sync.domain.entities.message import Message


class ChatApi(Protocol):
    """Request/response backend.

    Every method raises from the application.exceptions taxonomy:
    Unreachable, ServerError, AuthRequired or RequestRejected.
    """

    async def health(self, timeout: float) -> None: ...

    async def mark_read(self, conversation_id: str) -> None: ...

    async def send_message(self, outgoing: OutgoingMessage) -> Message: ...
