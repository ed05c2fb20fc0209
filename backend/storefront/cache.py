# Overview: Process-local TTL cache for pagination totals.

from __future__ import annotations

import threading
import time
from typing import Any, Callable


class TTLCache:
    """
    Key/value cache where each entry expires `ttl_seconds` after it is set.

    Owned by the app (app.extensions["count_cache"]) rather than module
    state. Staleness up to the TTL is acceptable for listing totals.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def get_or_set(self, key: str, producer: Callable[[], Any]) -> Any:
        value = self.get(key)
        if value is None:
            value = producer()
            self.set(key, value)
        return value
