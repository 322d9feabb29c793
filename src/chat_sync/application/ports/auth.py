from __future__ import annotations

from typing import Protocol


class CredentialProvider(Protocol):
    async def get_token(self) -> str:
        """Return a bearer token or raise AuthRequired."""
        ...
