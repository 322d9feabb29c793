from __future__ import annotations

from chat_sync.application.exceptions import QuotaExceeded


class InMemoryStore:
    """Implements application.ports.store.PersistentStore.

    ``quota_bytes`` bounds the summed size of keys and values, the way a
    browser bounds its local storage.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self._quota = quota_bytes

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self._quota is not None:
            used = self._used_bytes() - self._entry_size(key, self._data.get(key))
            if used + self._entry_size(key, value) > self._quota:
                raise QuotaExceeded(f"storing {key!r} exceeds {self._quota} bytes")
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def _used_bytes(self) -> int:
        return sum(self._entry_size(k, v) for k, v in self._data.items())

    @staticmethod
    def _entry_size(key: str, value: str | None) -> int:
        if value is None:
            return 0
        return len(key.encode()) + len(value.encode())
