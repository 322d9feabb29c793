from __future__ import annotations

from dataclasses import dataclass, field

from chat_sync.domain.entities.message import Attachment, Message


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    conversation_id: str
    client_msg_id: str
    content: str | None = None
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)

    @classmethod
    def from_message(cls, message: Message) -> OutgoingMessage:
        return cls(
            conversation_id=message.conversation_id,
            client_msg_id=message.id,
            content=message.content,
            attachments=message.attachments,
        )


@dataclass(frozen=True, slots=True)
class Delivery:
    """A queued message the backend has now accepted."""

    original_id: str
    message: Message
