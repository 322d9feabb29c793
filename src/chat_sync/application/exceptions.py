from __future__ import annotations


class SyncError(Exception):
    """Base synchronization error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class Unreachable(SyncError):
    """Timed out or refused; the backend could not be reached."""


class ServerError(SyncError):
    def __init__(self, detail: str = "", status_code: int = 500) -> None:
        super().__init__(detail)
        self.status_code = status_code


class AuthRequired(SyncError):
    """Missing or expired credential. Never retried locally."""


class RequestRejected(SyncError):
    def __init__(self, detail: str = "", status_code: int = 400) -> None:
        super().__init__(detail)
        self.status_code = status_code


class ValidationError(SyncError):
    pass


class StorageError(SyncError):
    pass


class QuotaExceeded(StorageError):
    pass


RETRYABLE_ERRORS: tuple[type[SyncError], ...] = (Unreachable, ServerError)
