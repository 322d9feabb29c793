from __future__ import annotations

import uuid

TEMP_ID_PREFIX = "temp-"
LOCAL_CONVERSATION_PREFIXES = ("temp_chat", "mock")


def new_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(message_id: str) -> bool:
    return message_id.startswith(TEMP_ID_PREFIX)


def is_local_conversation(conversation_id: str) -> bool:
    """Conversations that only exist client-side never reach the API."""
    return conversation_id.startswith(LOCAL_CONVERSATION_PREFIXES)
