"""
In-process expiring cache for workspace and meta lookups.
"""

import threading
import time
from typing import Any, Callable, Dict, Tuple


class ExpiringCache:
    """Key/value cache where each entry expires after its own TTL."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def fetch(self, key: str, ttl: float, loader: Callable[[], Any]) -> Any:
        """Return the cached value for key, loading and storing it when missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now < entry[0]:
                return entry[1]

        value = loader()
        with self._lock:
            self._entries[key] = (now + ttl, value)
        return value

    def delete_matched(self, prefix: str) -> None:
        with self._lock:
            for key in [key for key in self._entries if key.startswith(prefix)]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
