from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:5000/api"
    SOCKET_URL: str = "http://localhost:5000"
    SOCKET_PATH: str = "socket.io"

    STORE_BACKEND: Literal["memory", "redis"] = "memory"
    STORE_NAMESPACE: str = "chat_sync:"
    REDIS_URL: str = "redis://localhost:6379/0"

    AVAILABILITY_TTL_SECONDS: float = 30.0
    PROBE_TIMEOUTS: list[float] = [3.0, 7.0]
    PROBE_RETRY_DELAY: float = 1.0

    CACHE_WINDOW: int = 30
    CACHE_FALLBACK_WINDOWS: list[int] = [10, 5]
    CACHE_MIN_INTERVAL_SECONDS: float = 30.0
    CACHE_STALE_HOURS: float = 12.0

    OUTBOX_MAX_ATTEMPTS: int = 5
    OUTBOX_POLL_INTERVAL: float = 120.0

    READ_DEBOUNCE_SECONDS: float = 10.0
    PENDING_READ_MAX_AGE_HOURS: float = 24.0

    READ_TIMEOUT: float = 5.0
    SEND_TIMEOUT: float = 10.0
    UPLOAD_TIMEOUT: float = 60.0

    ACCESS_TOKEN: str = ""

    SOCKET_RECONNECT_ATTEMPTS: int = 10
    SOCKET_RECONNECT_DELAY: float = 1.0
    SOCKET_RECONNECT_DELAY_MAX: float = 10.0
    SOCKET_CONNECT_TIMEOUT: float = 8.0

    TYPING_IDLE_SECONDS: float = 3.0

    model_config = ConfigDict(
        env_prefix="CHAT_SYNC_",
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
