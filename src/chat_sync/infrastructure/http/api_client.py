"""httpx client for the chat backend's request/response API."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Sequence

import httpx

from chat_sync.application.dto.message import OutgoingMessage
from chat_sync.application.exceptions import (
    AuthRequired,
    RequestRejected,
    ServerError,
    Unreachable,
)
from chat_sync.application.ports.auth import CredentialProvider
from chat_sync.config import settings
from chat_sync.domain.entities.message import Attachment, Message
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.infrastructure.mappers.message import (
    attachment_from_wire,
    attachment_to_wire,
    message_from_wire,
)

logger = logging.getLogger(__name__)


class HttpxChatApi:
    """Implements application.ports.api.ChatApi and ports.uploader.AttachmentUploader."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialProvider,
        *,
        read_timeout: float = settings.READ_TIMEOUT,
        send_timeout: float = settings.SEND_TIMEOUT,
        upload_timeout: float = settings.UPLOAD_TIMEOUT,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._read_timeout = read_timeout
        self._send_timeout = send_timeout
        self._upload_timeout = upload_timeout

    async def health(self, timeout: float) -> None:
        # Cache-busting parameter keeps intermediaries from answering for us.
        await self._request(
            "GET", "/health", timeout=timeout, authenticated=False,
            params={"_t": int(time.time() * 1000)},
        )

    async def mark_read(self, conversation_id: str) -> None:
        await self._request(
            "PUT", f"/conversations/{conversation_id}/read",
            timeout=self._read_timeout, json={},
        )

    async def send_message(self, outgoing: OutgoingMessage) -> Message:
        response = await self._request(
            "POST", "/messages",
            timeout=self._send_timeout,
            json={
                "conversationId": outgoing.conversation_id,
                "clientMsgId": outgoing.client_msg_id,
                "content": outgoing.content,
                "attachments": [attachment_to_wire(a) for a in outgoing.attachments],
            },
        )
        try:
            body = response.json()
        except ValueError as exc:
            raise ServerError("send: response is not JSON", response.status_code) from exc
        message = message_from_wire(
            body, conversation_id=outgoing.conversation_id, status=MessageStatus.SENT,
        )
        if message is None:
            raise ServerError("send: response carries no message id", response.status_code)
        return message

    async def upload(self, files: Sequence[str | Path]) -> list[Attachment]:
        """Upload local files; the returned attachments go into the next send."""
        parts = [("files", (Path(f).name, Path(f).read_bytes())) for f in files]
        response = await self._request(
            "POST", "/uploads/chat-attachment", timeout=self._upload_timeout, files=parts,
        )
        try:
            body = response.json()
        except ValueError as exc:
            raise ServerError("upload: response is not JSON", response.status_code) from exc
        if not isinstance(body, dict) or not body.get("success"):
            raise ServerError("upload: backend reported failure", response.status_code)
        attachments = [attachment_from_wire(item) for item in body.get("files") or []]
        return [a for a in attachments if a is not None]

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        if authenticated:
            headers["Authorization"] = f"Bearer {await self._credentials.get_token()}"

        try:
            response = await self._client.request(
                method, path, headers=headers, timeout=timeout, **kwargs,
            )
        except httpx.TimeoutException as exc:
            raise Unreachable(f"{method} {path}: timed out after {timeout}s") from exc
        except httpx.TransportError as exc:
            raise Unreachable(f"{method} {path}: {exc!r}") from exc

        _raise_for_status(method, path, response)
        return response


def _raise_for_status(method: str, path: str, response: httpx.Response) -> None:
    code = response.status_code
    if code < 400:
        return
    detail = f"{method} {path}: HTTP {code}"
    if code in (401, 403):
        raise AuthRequired(detail)
    if code == 408:
        raise Unreachable(detail)
    if code == 429 or code >= 500:
        raise ServerError(detail, code)
    raise RequestRejected(detail, code)


def create_api_client(
    credentials: CredentialProvider,
    base_url: str = settings.API_BASE_URL,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HttpxChatApi:
    client = httpx.AsyncClient(base_url=base_url, transport=transport)
    logger.debug("API client created for %s", base_url)
    return HttpxChatApi(client, credentials)
