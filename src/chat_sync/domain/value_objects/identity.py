from __future__ import annotations

from dataclasses import dataclass
from typing import Any

_ID_KEYS = ("_id", "id", "userId")
_NAME_KEYS = ("name", "fullName", "username")
UNKNOWN_NAME = "Unknown"


@dataclass(frozen=True, slots=True)
class Identity:
    """Canonical sender/reader identity."""

    id: str
    name: str = UNKNOWN_NAME


def normalize_identity(raw: Any) -> Identity | None:
    """Build an Identity from whatever shape the backend sent.

    Accepts an existing Identity, a bare id (str/int) or a mapping carrying
    one of ``_id``/``id``/``userId`` and optionally ``name``/``fullName``/
    ``username``. Returns None when no id can be found.
    """
    if raw is None:
        return None
    if isinstance(raw, Identity):
        return raw
    if isinstance(raw, (str, int)):
        value = str(raw).strip()
        return Identity(id=value) if value else None
    if not isinstance(raw, dict):
        return None

    ident = ""
    for key in _ID_KEYS:
        value = raw.get(key)
        if value is not None and str(value).strip():
            ident = str(value).strip()
            break
    if not ident:
        return None

    name = UNKNOWN_NAME
    for key in _NAME_KEYS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            name = value.strip()
            break
    return Identity(id=ident, name=name)
