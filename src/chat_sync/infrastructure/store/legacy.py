"""One-time migration of the single-blob history format."""
from __future__ import annotations

import logging

from chat_sync.application.exceptions import StorageError
from chat_sync.application.ports.store import (
    PersistentStore,
    count_key,
    messages_key,
    timestamp_key,
)
from chat_sync.config import settings
from chat_sync.infrastructure.store.serializer import dump_value, load_value

logger = logging.getLogger(__name__)

LEGACY_HISTORY_PREFIX = "soulspace_chat_history_"
_MESSAGES_PREFIX = "messages_"


class LegacyMigratingStore:
    """PersistentStore wrapper that upgrades legacy history on first read.

    Older clients kept ``soulspace_chat_history_{id}`` holding
    ``{"messages": [...], "timestamp": ...}``. A miss on ``messages_{id}``
    falls back to that key, rewrites its newest ``window`` messages under
    the current keys and removes the legacy blob.
    """

    def __init__(self, inner: PersistentStore, *, window: int = settings.CACHE_WINDOW) -> None:
        self._inner = inner
        self._window = window

    async def get(self, key: str) -> str | None:
        value = await self._inner.get(key)
        if value is not None or not key.startswith(_MESSAGES_PREFIX):
            return value
        return await self._migrate(key[len(_MESSAGES_PREFIX):])

    async def set(self, key: str, value: str) -> None:
        await self._inner.set(key, value)

    async def delete(self, key: str) -> None:
        await self._inner.delete(key)
        if key.startswith(_MESSAGES_PREFIX):
            await self._inner.delete(f"{LEGACY_HISTORY_PREFIX}{key[len(_MESSAGES_PREFIX):]}")

    async def keys(self, prefix: str = "") -> list[str]:
        return await self._inner.keys(prefix)

    async def _migrate(self, conversation_id: str) -> str | None:
        legacy_key = f"{LEGACY_HISTORY_PREFIX}{conversation_id}"
        blob = load_value(await self._inner.get(legacy_key))
        if not isinstance(blob, dict) or not isinstance(blob.get("messages"), list) or not blob["messages"]:
            return None

        messages = blob["messages"][-self._window:]
        raw = dump_value(messages)
        stamp = blob.get("timestamp")
        try:
            await self._inner.set(messages_key(conversation_id), raw)
            if isinstance(stamp, str):
                await self._inner.set(timestamp_key(conversation_id), stamp)
            await self._inner.set(count_key(conversation_id), str(len(messages)))
            await self._inner.delete(legacy_key)
        except StorageError:
            # Still readable from the legacy key; migrate on a later read.
            logger.warning("Legacy history migration for %s deferred", conversation_id)
            return raw
        logger.info("Migrated legacy history for %s (%d messages)", conversation_id, len(messages))
        return raw
