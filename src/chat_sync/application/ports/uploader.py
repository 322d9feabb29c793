from __future__ import annotations

from typing import Any, Protocol, Sequence

from chat_sync.domain.entities.message import Attachment


class AttachmentUploader(Protocol):
    async def upload(self, files: Sequence[Any]) -> list[Attachment]: ...
