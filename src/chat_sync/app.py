from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from chat_sync.application.exceptions import ValidationError
from chat_sync.application.ports.auth import CredentialProvider
from chat_sync.application.ports.store import PersistentStore
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import OnChange
from chat_sync.domain.value_objects.identity import Identity, normalize_identity
from chat_sync.infrastructure.auth.token_provider import StaticTokenProvider
from chat_sync.infrastructure.http.api_client import create_api_client
from chat_sync.infrastructure.store.legacy import LegacyMigratingStore
from chat_sync.infrastructure.store.memory import InMemoryStore
from chat_sync.infrastructure.store.redis_store import create_redis_store
from chat_sync.infrastructure.ws.socketio_channel import SocketIOChannel
from chat_sync.logging_context import conversation_id_ctx
from chat_sync.services.reconciler import OnPeerTyping
from chat_sync.services.session import ConversationSession, OnAuthRequired

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_session(
    conversation_id: str,
    user: Identity | dict[str, Any] | str,
    *,
    credentials: CredentialProvider | None = None,
    store: PersistentStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    on_change: OnChange | None = None,
    on_auth_required: OnAuthRequired | None = None,
    on_peer_typing: OnPeerTyping | None = None,
) -> AsyncIterator[ConversationSession]:
    """Open one conversation wired from settings; everything is released on exit."""
    identity = normalize_identity(user)
    if identity is None:
        raise ValidationError(f"cannot derive an identity from {user!r}")
    credentials = credentials or StaticTokenProvider(settings.ACCESS_TOKEN or None)

    ctx_token = conversation_id_ctx.set(conversation_id)
    try:
        async with AsyncExitStack() as stack:
            api = create_api_client(credentials, settings.API_BASE_URL, transport=transport)
            stack.push_async_callback(api.aclose)

            if store is None:
                store = _build_store(stack)
            channel = SocketIOChannel(
                settings.SOCKET_URL,
                path=settings.SOCKET_PATH,
                auth={"token": await credentials.get_token()},
            )

            session = ConversationSession(
                conversation_id,
                identity,
                api=api,
                store=LegacyMigratingStore(store),
                channel=channel,
                uploader=api,
                on_change=on_change,
                on_auth_required=on_auth_required,
                on_peer_typing=on_peer_typing,
            )
            stack.push_async_callback(session.close)
            await session.open()
            logger.info("Session for %s opened as %s", conversation_id, identity.id)
            yield session
    finally:
        conversation_id_ctx.reset(ctx_token)


def _build_store(stack: AsyncExitStack) -> PersistentStore:
    if settings.STORE_BACKEND == "redis":
        redis_store = create_redis_store(settings.REDIS_URL, settings.STORE_NAMESPACE)
        stack.push_async_callback(redis_store.aclose)
        logger.info("Using Redis store at %s", settings.REDIS_URL)
        return redis_store
    logger.info("Using in-memory store; nothing survives this process")
    return InMemoryStore()
