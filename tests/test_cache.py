"""Tests for the in-process fetch cache."""
from __future__ import annotations

from core.config import reload_settings
from core.types import PropertyIdentifier, SourceKind
from services.cache import FetchCache, TTLCache


class TestTTLCache:
    """Expiry is driven by the injected clock."""

    def test_set_get(self, monotonic_clock):
        cache = TTLCache(default_ttl_seconds=60, clock=monotonic_clock)
        cache.set("key1", "value1")

        assert cache.get("key1") == "value1"
        assert cache.size == 1

    def test_miss_returns_none(self, monotonic_clock):
        cache = TTLCache(clock=monotonic_clock)
        assert cache.get("nonexistent") is None

    def test_entry_lives_until_ttl(self, monotonic_clock):
        cache = TTLCache(default_ttl_seconds=300, clock=monotonic_clock)
        cache.set("key1", "value1")

        monotonic_clock.advance(299.9)
        assert cache.get("key1") == "value1"

        monotonic_clock.advance(0.1)
        assert cache.get("key1") is None

    def test_cleanup_expired(self, monotonic_clock):
        cache = TTLCache(default_ttl_seconds=10, clock=monotonic_clock)
        cache.set("short", 1)
        cache.set("long", 2, ttl_seconds=100)

        monotonic_clock.advance(50)
        assert cache.cleanup_expired() == 1
        assert cache.get("long") == 2

    def test_stats(self, monotonic_clock):
        cache = TTLCache(clock=monotonic_clock)
        cache.set("key1", "value1")
        cache.get("key1")
        cache.get("key2")

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5


class TestFetchCache:
    """Keying and invalidation by PIN."""

    def test_keys_by_source_and_pin(self, fetch_cache, pin):
        fetch_cache.put(SourceKind.CLERK, pin, "clerk-doc")

        assert fetch_cache.get(SourceKind.CLERK, pin) == "clerk-doc"
        assert fetch_cache.get(SourceKind.RECORDER, pin) is None

    def test_invalidate_single_pin(self, fetch_cache, pin):
        other = PropertyIdentifier.parse("16-10-421-053-0000")
        for kind in SourceKind:
            fetch_cache.put(kind, pin, kind.value)
        fetch_cache.put(SourceKind.CLERK, other, "other")

        assert fetch_cache.invalidate(pin) == 4
        assert all(fetch_cache.get(kind, pin) is None for kind in SourceKind)
        assert fetch_cache.get(SourceKind.CLERK, other) == "other"

    def test_invalidate_everything(self, fetch_cache, pin):
        other = PropertyIdentifier.parse("16-10-421-053-0000")
        fetch_cache.put(SourceKind.CLERK, pin, "a")
        fetch_cache.put(SourceKind.CLERK, other, "b")

        assert fetch_cache.invalidate() == 2
        assert fetch_cache.get(SourceKind.CLERK, pin) is None
        assert fetch_cache.get(SourceKind.CLERK, other) is None

    def test_expires_after_five_minutes(self, monotonic_clock, pin):
        cache = FetchCache(TTLCache(default_ttl_seconds=300, clock=monotonic_clock))
        cache.put(SourceKind.GIS, pin, "doc")

        monotonic_clock.advance(301)
        assert cache.get(SourceKind.GIS, pin) is None

    def test_ttl_read_from_current_settings(self, monkeypatch):
        monkeypatch.setenv("FETCH_CACHE_TTL_SECONDS", "42")
        reload_settings()
        try:
            assert FetchCache().stats()["ttl_seconds"] == 42
        finally:
            monkeypatch.delenv("FETCH_CACHE_TTL_SECONDS")
            reload_settings()

        assert FetchCache().stats()["ttl_seconds"] == 300
