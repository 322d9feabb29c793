from __future__ import annotations

from typing import Any

from chat_sync.domain.entities.read_state import PendingReadOp
from chat_sync.infrastructure.mappers.message import parse_timestamp


def op_to_record(op: PendingReadOp) -> dict[str, Any]:
    return {"conversationId": op.conversation_id, "createdAt": op.created_at.isoformat()}


def op_from_record(data: Any) -> PendingReadOp | None:
    if not isinstance(data, dict):
        return None
    conversation_id = data.get("conversationId") or data.get("chatId")
    if not conversation_id:
        return None
    return PendingReadOp(
        conversation_id=str(conversation_id),
        created_at=parse_timestamp(data.get("createdAt") or data.get("timestamp")),
    )
