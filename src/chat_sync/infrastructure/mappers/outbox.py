from __future__ import annotations

from typing import Any

from chat_sync.domain.entities.outbox import OutboxEntry
from chat_sync.infrastructure.mappers.message import (
    message_from_record,
    message_to_record,
    parse_timestamp,
)


def entry_to_record(entry: OutboxEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "conversationId": entry.conversation_id,
        "message": message_to_record(entry.message),
        "attempts": entry.attempts,
        "createdAt": entry.created_at.isoformat(),
    }


def entry_from_record(data: Any) -> OutboxEntry | None:
    if not isinstance(data, dict):
        return None
    message = message_from_record(data.get("message") or {})
    conversation_id = data.get("conversationId") or data.get("chatId")
    if message is None or not conversation_id:
        return None
    attempts = data.get("attempts")
    return OutboxEntry(
        id=str(data.get("id") or message.id),
        conversation_id=str(conversation_id),
        message=message,
        attempts=attempts if isinstance(attempts, int) and attempts >= 0 else 0,
        created_at=parse_timestamp(data.get("createdAt") or data.get("timestamp")),
    )
