"""Short-lived, process-local cache keyed by owner scope."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Hashable

DEFAULT_MAX_ENTRIES = 1024


class TTLCache:
    """A dict whose entries expire after `ttl_seconds`.

    Entries are never invalidated on write; readers may see values up to
    one TTL old. Concurrent writers race with last-writer-wins.

    Expired entries are swept on every set(). Past `max_entries` the
    oldest entries are evicted first.
    """

    def __init__(
        self,
        ttl_seconds: float = 180.0,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            # dicts keep insertion order; re-insert so the key counts as newest
            self._entries.pop(key, None)
            self._entries[key] = (now + self.ttl_seconds, value)
            while len(self._entries) > self.max_entries:
                del self._entries[next(iter(self._entries))]

    def _sweep(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for k in expired:
            del self._entries[k]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def size(self) -> int:
        """Entries held, including expired ones not yet swept."""
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for expires_at, _ in self._entries.values() if expires_at > now)
