"""Shared utility functions used across the service."""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson


# --- Time ---------------------------------------------------------------------

def utc_now() -> datetime:
    """Timezone-aware current time; the default clock for the service."""
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


# --- Text Utilities -----------------------------------------------------------

def truncate_text(text: str, max_chars: int = 50) -> str:
    """Truncate text for log lines."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


def sha256_hex(*parts: str) -> str:
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()


# --- File I/O -----------------------------------------------------------------

def dumps_json(data: Any) -> bytes:
    """Serialise with orjson (handles datetime, numpy arrays and non-str keys)."""
    return orjson.dumps(
        data,
        option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS | orjson.OPT_SERIALIZE_NUMPY,
    )


def ensure_dirs(*paths: str | Path) -> None:
    """Create directories (and parents) if they don't exist."""
    for p in paths:
        Path(p).mkdir(parents=True, exist_ok=True)
