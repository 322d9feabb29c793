from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import jwt

from chat_sync.application.exceptions import AuthRequired

TokenSource = Callable[[], str | None]


class StaticTokenProvider:
    """Serve a bearer token issued elsewhere, refusing it once expired.

    The signature is the backend's business; only the ``exp`` claim is read.
    Opaque (non-JWT) tokens are passed through unchecked.
    """

    def __init__(self, source: str | TokenSource | None, leeway_seconds: float = 0.0) -> None:
        self._source = source
        self._leeway = leeway_seconds

    async def get_token(self) -> str:
        token = self._source() if callable(self._source) else self._source
        if not token:
            raise AuthRequired("no credential available")
        expires_at = _expiry(token)
        if expires_at is not None:
            remaining = (expires_at - datetime.now(timezone.utc)).total_seconds()
            if remaining <= self._leeway:
                raise AuthRequired("credential expired")
        return token


def _expiry(token: str) -> datetime | None:
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)
