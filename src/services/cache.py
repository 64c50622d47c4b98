"""In-process caching for upstream fetches."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.config import Settings, get_settings
from core.logging_config import get_logger
from core.types import PropertyIdentifier, SourceKind
from core.utils import MonotonicClock, monotonic

LOGGER = get_logger(__name__)


@dataclass
class TTLEntry:
    """A single cache entry with TTL support."""

    value: Any
    created_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        """An entry is live for exactly ``ttl_seconds`` after creation."""
        return now - self.created_at >= self.ttl_seconds


class TTLCache:
    """
    In-memory cache with TTL (time-to-live) support.

    The clock is injected so expiry is deterministic in tests. Writes are
    last-write-wins; no locking is done.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 300,
        clock: MonotonicClock = monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl_seconds: Default TTL for entries (5 minutes).
            clock: Returns monotonic seconds.
        """
        self._cache: Dict[str, TTLEntry] = {}
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache.

        Args:
            key: Cache key.

        Returns:
            Cached value or None if not found/expired.
        """
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            self._cache.pop(key, None)
            self._misses += 1
            return None

        self._hits += 1
        return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
    ) -> None:
        """
        Set a value in the cache.

        Args:
            key: Cache key.
            value: Value to cache.
            ttl_seconds: TTL in seconds (uses default if not specified).
        """
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        self._cache[key] = TTLEntry(
            value=value,
            created_at=self._clock(),
            ttl_seconds=ttl,
        )

    def delete(self, key: str) -> bool:
        """
        Delete a value from the cache.

        Returns:
            True if the key existed and was deleted.
        """
        return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        """Clear all entries from the cache."""
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries from the cache.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

    @property
    def size(self) -> int:
        return len(self._cache)

    @property
    def hit_rate(self) -> float:
        """Get the cache hit rate (0.0 - 1.0)."""
        total = self._hits + self._misses
        if total == 0:
            return 0.0
        return self._hits / total

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "size": self.size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self.hit_rate, 3),
            "ttl_seconds": self._default_ttl,
        }


class FetchCache:
    """
    Short-lived memo of upstream fetches keyed by (source, PIN).

    Session clients consult it before any network call and populate it
    only after a fetch completes without raising.
    """

    def __init__(self, cache: Optional[TTLCache] = None, settings: Optional[Settings] = None):
        if cache is None:
            settings = settings or get_settings()
            cache = TTLCache(default_ttl_seconds=settings.fetch_cache_ttl_seconds)
        self._cache = cache

    @staticmethod
    def key(kind: SourceKind, pin: PropertyIdentifier) -> str:
        return f"{kind.value}:{pin.value}"

    def get(self, kind: SourceKind, pin: PropertyIdentifier) -> Optional[Any]:
        return self._cache.get(self.key(kind, pin))

    def put(self, kind: SourceKind, pin: PropertyIdentifier, value: Any) -> None:
        self._cache.set(self.key(kind, pin), value)

    def invalidate(self, pin: Optional[PropertyIdentifier] = None) -> int:
        """
        Drop cached fetches.

        Args:
            pin: Clear only this PIN's entries for every source; None clears all.

        Returns:
            Number of entries removed (the full size when clearing everything).
        """
        if pin is None:
            removed = self._cache.size
            self._cache.clear()
            LOGGER.info(f"Cleared in-process fetch cache ({removed} entries)")
            return removed

        removed = sum(1 for kind in SourceKind if self._cache.delete(self.key(kind, pin)))
        LOGGER.info(f"Cleared {removed} in-process fetch cache entries for {pin}")
        return removed

    def stats(self) -> Dict[str, Any]:
        return self._cache.stats()


_fetch_cache: Optional[FetchCache] = None


def get_fetch_cache() -> FetchCache:
    """Get the process-wide fetch cache."""
    global _fetch_cache
    if _fetch_cache is None:
        _fetch_cache = FetchCache()
    return _fetch_cache


__all__ = [
    "TTLCache",
    "TTLEntry",
    "FetchCache",
    "get_fetch_cache",
]
