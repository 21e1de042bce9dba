from __future__ import annotations

import hashlib
import time
from threading import RLock
from typing import Any, Callable, Dict, Optional, Tuple


def cache_key(audio: bytes, mime_type: str, *parts: object) -> str:
    h = hashlib.sha256()
    h.update(audio)
    h.update(b"\x00")
    h.update(mime_type.encode("utf-8"))
    for part in parts:
        h.update(b"\x00")
        h.update(repr(part).encode("utf-8"))
    return h.hexdigest()


class InMemoryOutcomeCache:
    """
    TTL cache for finished transcription outcomes.

    Passed into the pipeline explicitly; nothing in the package holds a
    process-wide instance.
    """

    def __init__(self, ttl_seconds: int, *, clock: Callable[[], float] = time.time):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = RLock()
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any) -> None:
        if self._ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock() + self._ttl_seconds, value)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
