"""Live-channel event names and payload models."""
from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from chat_sync.domain.value_objects.identity import normalize_identity

# Client → Server
SETUP = "setup"
JOIN_CONVERSATION = "join-conversation"
TYPING = "typing"
STOP_TYPING = "stop-typing"
MESSAGE_READ = "message-read"

# Server → Client
MESSAGE_RECEIVED = "message-received"
MESSAGES_MARKED_READ = "messages-marked-read"

INBOUND_EVENTS = (MESSAGE_RECEIVED, MESSAGES_MARKED_READ, TYPING, STOP_TYPING)


def _identity_id(value: Any) -> Any:
    identity = normalize_identity(value)
    return identity.id if identity else value


class MessagesMarkedRead(BaseModel):
    model_config = ConfigDict(extra="ignore")

    conversation_id: str = Field(validation_alias=AliasChoices("conversationId", "chatId"))
    read_by: str | None = Field(default=None, validation_alias=AliasChoices("readBy", "userId"))

    @field_validator("conversation_id", "read_by", mode="before")
    @classmethod
    def _flatten(cls, value: Any) -> Any:
        return _identity_id(value)


class TypingEvent(BaseModel):
    """Peers send either a bare conversation id or an object."""

    model_config = ConfigDict(extra="ignore")

    conversation_id: str = Field(validation_alias=AliasChoices("conversationId", "chatId"))
    user_id: str | None = Field(default=None, validation_alias=AliasChoices("userId", "user"))

    @field_validator("conversation_id", "user_id", mode="before")
    @classmethod
    def _flatten(cls, value: Any) -> Any:
        return _identity_id(value)

    @classmethod
    def parse(cls, raw: Any) -> TypingEvent:
        if isinstance(raw, (str, int)):
            raw = {"conversationId": str(raw)}
        return cls.model_validate(raw)


class ConversationSignal(BaseModel):
    """Outbound read/typing notifications."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(serialization_alias="chatId")
    user_id: str = Field(serialization_alias="userId")

    def payload(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True)
        data["conversationId"] = self.conversation_id
        return data
