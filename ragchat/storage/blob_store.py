"""
Key-value blob persistence
---------------------------
The index and the session map are each persisted as one JSON document.
JsonFileStore writes atomically: the payload goes to a temp file in the
same directory which is then os.replace()d over the target, so a crash
mid-write never leaves a truncated file behind.

MemoryBlobStore keeps the last saved payload in memory and is used by the
test-suite and by callers that do not want anything on disk.
"""
from __future__ import annotations

import copy
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import orjson
from loguru import logger

from ragchat.utils.helpers import dumps_json


@runtime_checkable
class BlobStore(Protocol):
    """Opaque durable store holding a single JSON-compatible object."""

    def load(self) -> Any | None: ...

    def save(self, data: Any) -> None: ...


class JsonFileStore:
    """One JSON file on disk, replaced atomically on every save."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.save_count: int = 0

    def load(self) -> Any | None:
        if not self.path.exists():
            logger.debug(f"[JsonFileStore] {self.path} not found")
            return None
        return orjson.loads(self.path.read_bytes())

    def save(self, data: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = dumps_json(data)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self.save_count += 1

    def __repr__(self) -> str:
        return f"JsonFileStore({str(self.path)!r})"


class MemoryBlobStore:
    """In-memory stand-in with the same contract as JsonFileStore."""

    def __init__(self, data: Any | None = None) -> None:
        self._data = copy.deepcopy(data)
        self.save_count: int = 0

    def load(self) -> Any | None:
        return copy.deepcopy(self._data)

    def save(self, data: Any) -> None:
        # Round-trip through JSON so stored values look exactly like file contents
        self._data = orjson.loads(dumps_json(data))
        self.save_count += 1

    def __repr__(self) -> str:
        return "MemoryBlobStore()"
