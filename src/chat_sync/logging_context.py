from __future__ import annotations

import logging
from contextvars import ContextVar

conversation_id_ctx: ContextVar[str] = ContextVar("conversation_id", default="")


class ConversationContextFilter(logging.Filter):
    """Stamps ``record.conversation_id`` from the active session context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.conversation_id = conversation_id_ctx.get() or "-"
        return True
