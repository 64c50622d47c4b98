"""Persistent 7-day cache of per-source extraction results.

One row per (PIN, source). Writes are upserts keyed on that pair, so
concurrent refreshes of the same key resolve last-write-wins inside the
database without application locks.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, ContextManager, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import get_settings
from core.db import get_session_factory
from core.exceptions import BackendUnavailableError
from core.logging_config import get_logger
from core.models import PropertyCache
from core.types import PropertyIdentifier, SourceKind, SourceRecord
from core.utils import Clock, ensure_aware, isoformat_utc, utcnow

LOGGER = get_logger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def dialect_insert(session: Session):
    """The session dialect's ON CONFLICT capable ``insert``, or None."""
    return _UPSERT_DIALECTS.get(session.get_bind().dialect.name)


@dataclass
class CacheEntry:
    """A persisted result as read back from the cache table."""

    pin: str
    source: str
    data: Optional[Dict[str, Any]]
    error: Optional[str]
    error_code: Optional[str]
    fetched_at: datetime

    @classmethod
    def from_row(cls, row: PropertyCache) -> "CacheEntry":
        return cls(
            pin=row.pin,
            source=row.source,
            data=row.data,
            error=row.error,
            error_code=row.error_code,
            fetched_at=ensure_aware(row.fetched_at),
        )

    def age(self, now: datetime) -> timedelta:
        return now - self.fetched_at

    def to_envelope(self, stale: bool = False) -> Dict[str, Any]:
        """
        Render as a cache-served API envelope.

        Rows without data render as failures with their stored error, still
        annotated as cached.
        """
        if self.data is not None:
            envelope: Dict[str, Any] = {"success": True, "data": self.data}
        else:
            envelope = {
                "success": False,
                "error": self.error or "No data available",
                "code": self.error_code or "FETCH_ERROR",
                "data": None,
            }
        envelope["cached"] = True
        envelope["cachedAt"] = isoformat_utc(self.fetched_at)
        if stale:
            envelope["stale"] = True
        return envelope


class PropertyCacheService:
    """
    Read, write and inspect the ``property_cache`` table.

    Usage:
        cache = PropertyCacheService()
        entry = cache.get_cached(pin, SourceKind.CLERK)
        if entry and not cache.is_stale(entry):
            return entry.to_envelope()
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        max_age: Optional[timedelta] = None,
        clock: Clock = utcnow,
    ):
        settings = get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.max_age = max_age or timedelta(seconds=settings.persistent_cache_max_age_seconds)
        self.clock = clock

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_cached(self, pin: PropertyIdentifier, kind: SourceKind) -> Optional[CacheEntry]:
        """
        Current row for (pin, source), or None.

        A database failure is logged and reads as a miss so a live fetch can
        still answer.
        """
        try:
            with self.session_factory() as session:
                row = session.execute(
                    select(PropertyCache).where(
                        PropertyCache.pin == pin.value,
                        PropertyCache.source == kind.value,
                    )
                ).scalar_one_or_none()
                return CacheEntry.from_row(row) if row is not None else None
        except SQLAlchemyError as e:
            LOGGER.warning(f"Cache read failed for {pin} {kind.value}: {e}")
            return None

    def get_all_for_pin(self, pin: PropertyIdentifier) -> Dict[str, CacheEntry]:
        with self.session_factory() as session:
            rows = session.execute(
                select(PropertyCache).where(PropertyCache.pin == pin.value)
            ).scalars().all()
            return {row.source: CacheEntry.from_row(row) for row in rows}

    def is_stale(self, entry: CacheEntry) -> bool:
        """Stale strictly after ``max_age``; an entry exactly at the limit is fresh."""
        return entry.age(self.clock()) > self.max_age

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def upsert_cached(
        self,
        pin: PropertyIdentifier,
        kind: SourceKind,
        data: Optional[Dict[str, Any]],
        error: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        """
        Insert or overwrite the row for (pin, source) stamped with the clock.

        Raises:
            BackendUnavailableError: The database rejected the write.
        """
        values = {
            "pin": pin.value,
            "source": kind.value,
            "data": data,
            "error": error,
            "error_code": error_code,
            "fetched_at": self.clock(),
        }
        try:
            with self.session_factory() as session:
                self._upsert(session, values)
        except SQLAlchemyError as e:
            LOGGER.error(f"Cache write failed for {pin} {kind.value}: {e}")
            raise BackendUnavailableError("Property cache is unavailable") from e

    def store_record(self, record: SourceRecord) -> None:
        """Persist a parsed record, keeping its error alongside any payload."""
        data = record.to_dict() if record.payload is not None else None
        self.upsert_cached(record.pin, record.kind, data, record.error, record.error_code)

    def _upsert(self, session: Session, values: Dict[str, Any]) -> None:
        insert_fn = dialect_insert(session)
        if insert_fn is not None:
            stmt = insert_fn(PropertyCache).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["pin", "source"],
                set_={
                    "data": stmt.excluded.data,
                    "error": stmt.excluded.error,
                    "error_code": stmt.excluded.error_code,
                    "fetched_at": stmt.excluded.fetched_at,
                },
            )
            session.execute(stmt)
            return

        # Backends without ON CONFLICT: update in place or insert
        row = session.execute(
            select(PropertyCache).where(
                PropertyCache.pin == values["pin"],
                PropertyCache.source == values["source"],
            )
        ).scalar_one_or_none()
        if row is None:
            session.add(PropertyCache(**values))
        else:
            for key, value in values.items():
                setattr(row, key, value)

    def clear(self, pin: Optional[PropertyIdentifier] = None) -> int:
        """Delete rows for ``pin``, or every row. Returns the count removed."""
        try:
            with self.session_factory() as session:
                stmt = delete(PropertyCache)
                if pin is not None:
                    stmt = stmt.where(PropertyCache.pin == pin.value)
                result = session.execute(stmt)
                count = result.rowcount or 0
        except SQLAlchemyError as e:
            raise BackendUnavailableError("Property cache is unavailable") from e
        LOGGER.info(f"Cleared {count} persistent cache rows" + (f" for {pin}" if pin else ""))
        return count

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        try:
            with self.session_factory() as session:
                total_rows, total_pins, oldest, newest = session.execute(
                    select(
                        func.count(PropertyCache.id),
                        func.count(func.distinct(PropertyCache.pin)),
                        func.min(PropertyCache.fetched_at),
                        func.max(PropertyCache.fetched_at),
                    )
                ).one()
                by_source: List[tuple] = session.execute(
                    select(PropertyCache.source, func.count(PropertyCache.id)).group_by(
                        PropertyCache.source
                    )
                ).all()
        except SQLAlchemyError as e:
            raise BackendUnavailableError("Property cache is unavailable") from e
        return {
            "totalCachedPins": total_pins,
            "totalCacheRows": total_rows,
            "oldestEntry": isoformat_utc(oldest),
            "newestEntry": isoformat_utc(newest),
            "bySource": {source: count for source, count in by_source},
        }


__all__ = ["CacheEntry", "PropertyCacheService", "SessionFactory", "dialect_insert"]
