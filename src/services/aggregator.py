"""Cache-fronted source fetches and the four-way aggregation.

Read path: a fresh persistent row answers without touching the network.
Write path: every completed live fetch is persisted, failures included.
Fallback path: a live fetch that raises is answered from any existing row,
flagged ``stale``.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Union

from core.exceptions import BackendUnavailableError, CookPropertyError, status_for_code
from core.logging_config import get_context_logger, get_logger
from core.types import PropertyIdentifier, SourceKind, SourceRecord
from services.property_cache import PropertyCacheService
from services.sources import SourceService

LOGGER = get_logger(__name__)

Envelope = Dict[str, Any]
PinLike = Union[str, PropertyIdentifier]


def record_envelope(record: SourceRecord) -> Envelope:
    """Live-fetch envelope for a record."""
    if record.payload is not None:
        return {"success": True, "data": record.to_dict()}
    return {
        "success": False,
        "error": record.error or "No data available",
        "code": record.error_code or "FETCH_ERROR",
        "data": None,
    }


def envelope_status(envelope: Envelope) -> int:
    """HTTP status an envelope is served with."""
    if envelope.get("success"):
        return 200
    return status_for_code(envelope.get("code"))


def _as_pin(pin: PinLike) -> PropertyIdentifier:
    return pin if isinstance(pin, PropertyIdentifier) else PropertyIdentifier.parse(pin)


class CachedPropertyService:
    """
    Source data through the persistent cache.

    Usage:
        service = CachedPropertyService()
        envelope = await service.get_source_envelope("01-01-120-006-0000", SourceKind.CLERK)
        combined = await service.fetch_aggregated("01-01-120-006-0000")
    """

    def __init__(
        self,
        sources: Optional[SourceService] = None,
        cache: Optional[PropertyCacheService] = None,
    ):
        self.sources = sources or SourceService()
        self.cache = cache or PropertyCacheService()

    async def get_source_envelope(
        self,
        pin: PinLike,
        kind: SourceKind,
        force_refresh: bool = False,
    ) -> Envelope:
        """
        Envelope for one source.

        Raises:
            PinValidationError: Malformed PIN, before any I/O.
            SourceFetchError: Live fetch failed and nothing was cached.
        """
        pin = _as_pin(pin)
        logger = get_context_logger(__name__, pin=pin.value, source=kind.value)

        entry = self.cache.get_cached(pin, kind)
        if entry is not None and not force_refresh and not self.cache.is_stale(entry):
            logger.debug(f"Serving {kind.value} from persistent cache")
            return entry.to_envelope()

        try:
            record = await self.sources.fetch_source_data(pin, kind)
        except CookPropertyError as e:
            if entry is None:
                raise
            logger.warning(f"Live {kind.value} fetch failed, serving stale cache: {e.message}")
            return entry.to_envelope(stale=True)

        self._persist(record)
        return record_envelope(record)

    async def refresh(self, pin: PinLike, kind: SourceKind) -> SourceRecord:
        """
        Live fetch that always updates the persistent cache.

        Raises:
            SourceFetchError: The source could not be reached.
        """
        pin = _as_pin(pin)
        record = await self.sources.fetch_source_data(pin, kind)
        self._persist(record)
        return record

    def _persist(self, record: SourceRecord) -> None:
        try:
            self.cache.store_record(record)
        except BackendUnavailableError as e:
            LOGGER.error(f"Failed to persist {record.kind.value} for {record.pin}: {e.message}")

    async def _slot(self, pin: PropertyIdentifier, kind: SourceKind) -> Envelope:
        try:
            return await self.get_source_envelope(pin, kind)
        except CookPropertyError as e:
            return e.to_envelope()
        except Exception as e:
            LOGGER.error(f"Unexpected {kind.value} failure for {pin}: {e}", exc_info=True)
            return {"success": False, "error": str(e) or type(e).__name__, "code": "FETCH_ERROR"}

    async def fetch_aggregated(self, pin: PinLike) -> Dict[str, Envelope]:
        """
        All four sources concurrently, keyed by source name.

        Each slot holds that source's envelope; one failing source never
        affects the others.

        Raises:
            PinValidationError: Malformed PIN, before any fan-out.
        """
        pin = _as_pin(pin)
        kinds = list(SourceKind)
        results = await asyncio.gather(*(self._slot(pin, kind) for kind in kinds))
        return {kind.value: envelope for kind, envelope in zip(kinds, results)}

    def clear_cache(self, pin: Optional[PinLike] = None, persistent: bool = False) -> Dict[str, int]:
        """Drop fetch-cache entries for ``pin`` (or all), optionally the persisted rows too."""
        target = _as_pin(pin) if pin is not None else None
        result = {"fetchCacheCleared": self.sources.fetch_cache.invalidate(target)}
        if persistent:
            result["persistentCacheCleared"] = self.cache.clear(target)
        return result


_service: Optional[CachedPropertyService] = None


def get_property_service() -> CachedPropertyService:
    """Get the shared property service instance."""
    global _service
    if _service is None:
        _service = CachedPropertyService()
    return _service


__all__ = [
    "CachedPropertyService",
    "envelope_status",
    "get_property_service",
    "record_envelope",
]
