"""Pytest configuration and fixtures."""
from __future__ import annotations

import os
import sys
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

# Set test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["SCRAPER_MAX_RETRIES"] = "1"
os.environ["SCRAPER_RETRY_WAIT_SECONDS"] = "0"
os.environ["IMPORT_BATCH_DELAY_SECONDS"] = "0"
os.environ.pop("GOOGLE_API_KEY", None)

from core.config import Settings
from core.db import Base, build_engine
from core.types import PropertyIdentifier
from services.cache import FetchCache, TTLCache

TEST_PIN = "01-01-120-006-0000"


# =============================================================================
# Clocks
# =============================================================================


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic_clock() -> FakeMonotonic:
    return FakeMonotonic()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    from core import models  # noqa: F401

    test_engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Commit-on-success session context manager bound to the test engine."""
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @contextmanager
    def get_session():
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return get_session


# =============================================================================
# Network
# =============================================================================


class RecordingRouter:
    """
    Canned responses for an ``httpx.MockTransport`` keyed by URL path.

    Every request is recorded so tests can assert on call counts.
    """

    def __init__(self, routes: Dict[str, Callable[[httpx.Request], httpx.Response]] | None = None):
        self.routes = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, text="not found")
        return handler(request)

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def router() -> RecordingRouter:
    return RecordingRouter()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite:///:memory:",
        SCRAPER_MAX_RETRIES=1,
        SCRAPER_RETRY_WAIT_SECONDS=0,
        IMPORT_BATCH_DELAY_SECONDS=0,
        ENABLE_RECORDER_CONSIDERATIONS=False,
    )


@pytest.fixture
def fetch_cache(monotonic_clock) -> FetchCache:
    return FetchCache(TTLCache(default_ttl_seconds=300, clock=monotonic_clock))


@pytest.fixture
def pin() -> PropertyIdentifier:
    return PropertyIdentifier.parse(TEST_PIN)


@pytest.fixture
def property_cache(session_factory, clock):
    """Persistent cache on the test database and fake clock."""
    from services.property_cache import PropertyCacheService

    return PropertyCacheService(session_factory=session_factory, max_age=timedelta(days=7), clock=clock)
