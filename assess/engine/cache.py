"""
Client durable cache: a JSON file of key/value entries surviving reloads.

Keys have the shape ``(assessment_id, problem_id, kind)``. The cache is pure
storage; precedence rules live with its callers.
"""
import logging
import threading
from pathlib import Path
from typing import Any, Callable, NamedTuple

from assess.utils import read_json_file, write_json_file

log = logging.getLogger(__name__)

# Problem slot used for entries that belong to the whole attempt
ATTEMPT_SCOPE = "_attempt"

KIND_ATTEMPT = "attempt"
KIND_DRAFT = "draft"
KIND_RESYNC = "resync"

_SEPARATOR = "|"


class CacheKey(NamedTuple):
    assessment_id: str
    problem_id: str
    kind: str

    def encode(self) -> str:
        return _SEPARATOR.join(self)

    @classmethod
    def decode(cls, raw: str) -> "CacheKey | None":
        parts = raw.split(_SEPARATOR)
        if len(parts) != 3:
            return None
        return cls(*parts)


class DurableCache:
    """Thread-safe key/value store written through to one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._entries = self._load()

    def _load(self) -> dict[str, Any]:
        data = read_json_file(self.path, {})
        if not isinstance(data, dict):
            log.warning("Ignoring malformed cache file %s", self.path)
            return {}
        return data

    def _persist(self) -> None:
        write_json_file(self.path, self._entries)

    def get(self, key: CacheKey, default: Any = None) -> Any:
        with self._lock:
            return self._entries.get(key.encode(), default)

    def set(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key.encode()] = value
            self._persist()

    def remove(self, key: CacheKey) -> None:
        with self._lock:
            if self._entries.pop(key.encode(), None) is not None:
                self._persist()

    def keys(self) -> list[CacheKey]:
        with self._lock:
            decoded = (CacheKey.decode(raw) for raw in self._entries)
            return [key for key in decoded if key is not None]

    def update(self, key: CacheKey, fn: Callable[[Any], Any]) -> Any:
        """
        Atomically replace the value under ``key`` with ``fn(current)``.
        Returning ``None`` from ``fn`` removes the entry.
        """
        with self._lock:
            encoded = key.encode()
            value = fn(self._entries.get(encoded))
            if value is None:
                self._entries.pop(encoded, None)
            else:
                self._entries[encoded] = value
            self._persist()
            return value
