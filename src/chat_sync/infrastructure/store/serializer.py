from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return super().default(o)


def dump_value(value: Any) -> str:
    return json.dumps(value, cls=_Encoder, separators=(",", ":"))


def load_value(raw: str | None, default: Any = None) -> Any:
    """Decode a stored value; corrupt entries read as ``default``."""
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding undecodable stored value (%d bytes)", len(raw))
        return default
