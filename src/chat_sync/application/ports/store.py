from __future__ import annotations

from typing import Protocol


class PersistentStore(Protocol):
    """String key-value store shared by every open session.

    ``set`` raises QuotaExceeded when the backend rejects the write for lack
    of space, StorageError for any other backend failure.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


def messages_key(conversation_id: str) -> str:
    return f"messages_{conversation_id}"


def timestamp_key(conversation_id: str) -> str:
    return f"{conversation_id}_timestamp"


def count_key(conversation_id: str) -> str:
    return f"{conversation_id}_count"


OUTBOX_KEY = "outbox"
PENDING_READ_OPS_KEY = "pending_read_ops"
