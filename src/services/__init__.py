"""Application services for the Cook County property aggregator.

This package provides:
- In-process fetch cache (TTLCache / FetchCache)
- Persistent property cache with stale fallback
- Per-source fetch-and-parse and the four-way aggregation
- Google imagery for parcel coordinates
- Bulk PIN import jobs
- Bid / overbid storage

Service modules are imported directly (``from services.aggregator import ...``)
so the session clients can depend on the cache without import cycles.
"""
from __future__ import annotations

from .cache import FetchCache, TTLCache, TTLEntry, get_fetch_cache
from .retry import elapsed_ms, scraper_retry, with_retry

__all__ = [
    "FetchCache",
    "TTLCache",
    "TTLEntry",
    "get_fetch_cache",
    "elapsed_ms",
    "scraper_retry",
    "with_retry",
]
