"""Root conftest: exports .env.test so chat_sync.config builds test settings."""
from __future__ import annotations

import os
from pathlib import Path


def _read_env_file(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw in path.read_text().splitlines():
        entry = raw.strip()
        if not entry or entry.startswith("#") or "=" not in entry:
            continue
        name, value = entry.split("=", 1)
        values[name.strip()] = value.strip().strip('"')
    return values


_ENV_TEST = Path(__file__).resolve().parent / ".env.test"
if _ENV_TEST.is_file():
    for _name, _value in _read_env_file(_ENV_TEST).items():
        os.environ.setdefault(_name, _value)
