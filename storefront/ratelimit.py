"""Per-key request counters with a fixed expiry window."""

import threading
import time

from django.core.cache import caches


class CounterStore:
    """Counts hits per key; a key's window starts at its first hit."""

    def incr(self, key: str, window_seconds: int) -> int:
        raise NotImplementedError


class InMemoryCounterStore(CounterStore):
    """Process-local store; fine for a single worker and for tests."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._counters = {}  # key -> [count, expires_at]

    def _purge(self, now):
        expired = [k for k, (_, exp) in self._counters.items() if exp <= now]
        for k in expired:
            del self._counters[k]

    def incr(self, key, window_seconds):
        with self._lock:
            now = self._clock()
            self._purge(now)
            entry = self._counters.get(key)
            if entry is None:
                entry = self._counters[key] = [0, now + window_seconds]
            entry[0] += 1
            return entry[0]

    def __len__(self):
        return len(self._counters)


class CacheCounterStore(CounterStore):
    """Store backed by a Django cache, shared across workers when the cache is."""

    def __init__(self, alias="default", prefix="ratelimit"):
        self._cache = caches[alias]
        self._prefix = prefix

    def incr(self, key, window_seconds):
        cache_key = f"{self._prefix}:{key}"
        if self._cache.add(cache_key, 1, timeout=window_seconds):
            return 1
        try:
            return self._cache.incr(cache_key)
        except ValueError:
            # expired between add() and incr()
            self._cache.add(cache_key, 1, timeout=window_seconds)
            return 1


def build_store(backend: str) -> CounterStore:
    if backend == "memory":
        return InMemoryCounterStore()
    if backend == "cache":
        return CacheCounterStore()
    raise ValueError(f"Unknown rate limit backend: {backend!r}")
