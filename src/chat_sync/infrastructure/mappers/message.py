"""Conversions between Message entities and their wire / stored shapes."""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from chat_sync.domain.entities.message import Attachment, Message
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.identity import Identity, normalize_identity
from chat_sync.domain.value_objects.ids import is_temp_id

ANONYMOUS = Identity(id="")


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def _conversation_of(data: dict[str, Any]) -> str:
    for key in ("conversationId", "chatId", "chat", "conversation"):
        value = data.get(key)
        if isinstance(value, dict):
            value = value.get("_id") or value.get("id")
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def attachment_from_wire(data: Any) -> Attachment | None:
    if not isinstance(data, dict):
        return None
    url = data.get("url")
    if not isinstance(url, str) or not url:
        return None
    size = data.get("size")
    return Attachment(
        url=url,
        mime_type=str(data.get("mimeType") or data.get("type") or "unknown"),
        size=int(size) if isinstance(size, (int, float)) else None,
        name=data.get("name") if isinstance(data.get("name"), str) else None,
    )


def attachment_to_wire(attachment: Attachment) -> dict[str, Any]:
    return {
        "url": attachment.url,
        "mimeType": attachment.mime_type,
        "size": attachment.size,
        "name": attachment.name,
    }


def _attachments(raw: Any) -> tuple[Attachment, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(a for a in (attachment_from_wire(item) for item in raw) if a is not None)


def message_from_wire(
    data: Any,
    *,
    conversation_id: str | None = None,
    status: MessageStatus = MessageStatus.SENT,
) -> Message | None:
    """Normalize a backend message payload; None when it carries no id."""
    if not isinstance(data, dict):
        return None
    if isinstance(data.get("message"), dict):
        data = data["message"]
    raw_id = data.get("_id") or data.get("id")
    if raw_id is None or not str(raw_id).strip():
        return None
    if data.get("read") is True:
        status = MessageStatus.READ
    content = data.get("content")
    return Message(
        id=str(raw_id).strip(),
        conversation_id=_conversation_of(data) or (conversation_id or ""),
        sender=normalize_identity(data.get("sender")) or ANONYMOUS,
        content=content if isinstance(content, str) else None,
        timestamp=parse_timestamp(data.get("timestamp") or data.get("createdAt")),
        status=status,
        attachments=_attachments(data.get("attachments")),
    )


def message_to_record(message: Message) -> dict[str, Any]:
    """Full-fidelity form used by the outbox."""
    return {
        "_id": message.id,
        "conversationId": message.conversation_id,
        "sender": {"_id": message.sender.id, "name": message.sender.name},
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
        "status": message.status.value,
        "attachments": [attachment_to_wire(a) for a in message.attachments],
    }


def message_from_record(data: dict[str, Any]) -> Message | None:
    try:
        status = MessageStatus(data.get("status", MessageStatus.FAILED))
    except ValueError:
        status = MessageStatus.FAILED
    return message_from_wire(data, status=status)


def message_to_snapshot(message: Message) -> dict[str, Any]:
    """Stripped form kept by the snapshot cache."""
    return {
        "_id": message.id,
        "content": message.content or "",
        "sender": {"_id": message.sender.id, "name": message.sender.name} if message.sender.id else None,
        "timestamp": message.timestamp.isoformat(),
        "attachments": [{"url": a.url, "type": a.mime_type} for a in message.attachments],
    }


def message_from_snapshot(data: Any, conversation_id: str) -> Message | None:
    if not isinstance(data, dict):
        return None
    raw_id = str(data.get("_id") or "")
    status = MessageStatus.FAILED if is_temp_id(raw_id) else MessageStatus.SENT
    message = message_from_wire(data, conversation_id=conversation_id, status=status)
    if message is None:
        return None
    if message.conversation_id != conversation_id:
        message = replace(message, conversation_id=conversation_id)
    return message
