"""Fetch-and-parse for a single source.

``fetch_source_data`` drives the session client, parses the document and
applies the source-specific enrichments (recorder consideration amounts,
tax portal Street View backfill).
"""
from __future__ import annotations

from typing import Dict, Optional

import httpx

from core.config import Settings, get_settings
from core.exceptions import SourceNotFoundError, SourceParseError
from core.logging_config import get_context_logger, get_logger
from core.types import PropertyIdentifier, SourceDocument, SourceKind, SourceRecord
from parsers import parse_document
from parsers.recorder import RecorderPayload
from parsers.tax_portal import TaxPortalPayload
from scrapers import build_sessions
from scrapers.base import SourceSession
from scrapers.recorder import RecorderSession
from services.cache import FetchCache, get_fetch_cache
from services.google_maps import fetch_image_data_uri

LOGGER = get_logger(__name__)

# The portal links a Street View still; tiny answers are "no imagery" placeholders
MIN_STREET_VIEW_BYTES = 100


class SourceService:
    """
    Per-source fetch, parse and enrich.

    Usage:
        service = SourceService()
        record = await service.fetch_source_data(pin, SourceKind.CLERK)
    """

    def __init__(
        self,
        sessions: Optional[Dict[SourceKind, SourceSession]] = None,
        cache: Optional[FetchCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.fetch_cache = cache if cache is not None else get_fetch_cache()
        self.sessions = sessions or build_sessions(
            cache=self.fetch_cache, transport=transport, settings=self.settings
        )

    def session(self, kind: SourceKind) -> SourceSession:
        return self.sessions[kind]

    async def fetch_raw(self, pin: PropertyIdentifier, kind: SourceKind) -> SourceDocument:
        """Cleaned document straight from the session client."""
        return await self.session(kind).fetch(pin)

    async def fetch_source_data(self, pin: PropertyIdentifier, kind: SourceKind) -> SourceRecord:
        """
        Fetch and parse one source.

        Source-reported outcomes (no record, unusable page) come back as
        records carrying ``error`` and ``error_code``.

        Raises:
            SourceFetchError: The source could not be reached.
        """
        logger = get_context_logger(__name__, pin=pin.value, source=kind.value)
        try:
            document = await self.fetch_raw(pin, kind)
        except (SourceNotFoundError, SourceParseError) as e:
            logger.info(f"{kind.value} reported {e.code}: {e.message}")
            return SourceRecord.failure(kind, pin, e.message, e.code)

        record = parse_document(document)
        if isinstance(record.payload, RecorderPayload):
            await self._add_considerations(pin, record.payload)
        elif isinstance(record.payload, TaxPortalPayload):
            await self._backfill_street_view(record.payload)
        return record

    # -------------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------------

    async def _add_considerations(self, pin: PropertyIdentifier, payload: RecorderPayload) -> None:
        if not self.settings.enable_recorder_considerations:
            return
        session = self.session(SourceKind.RECORDER)
        if not isinstance(session, RecorderSession):
            return
        links = payload.document_links()[: self.settings.recorder_consideration_limit]
        if not links:
            return
        amounts = await session.fetch_considerations(pin, links)
        payload.apply_considerations(amounts)
        LOGGER.debug(f"Loaded {len(amounts)}/{len(links)} consideration amounts for {pin}")

    async def _backfill_street_view(self, payload: TaxPortalPayload) -> None:
        """Embed the linked Street View image when the page had no photo."""
        image = payload.property_image
        if image is None or image.photo or not image.street_view_url:
            return
        session = self.session(SourceKind.TAX_PORTAL)
        async with session.client() as client:
            image.photo = await fetch_image_data_uri(
                client,
                image.street_view_url,
                default_mime="image/jpeg",
                min_bytes=MIN_STREET_VIEW_BYTES,
                service=SourceKind.TAX_PORTAL.value,
                operation="street_view_backfill",
            )


__all__ = ["SourceService"]
