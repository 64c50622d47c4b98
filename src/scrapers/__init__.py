"""Session clients for the four Cook County sites."""
from __future__ import annotations

from typing import Dict, Optional

import httpx

from core.config import Settings
from core.types import SourceKind
from scrapers.base import SessionMachine, SourceSession
from scrapers.clerk import ClerkSession
from scrapers.gis import GisSession
from scrapers.recorder import RecorderSession
from scrapers.tax_portal import TaxPortalSession
from services.cache import FetchCache

SESSION_CLASSES: Dict[SourceKind, type[SourceSession]] = {
    SourceKind.TAX_PORTAL: TaxPortalSession,
    SourceKind.CLERK: ClerkSession,
    SourceKind.RECORDER: RecorderSession,
    SourceKind.GIS: GisSession,
}


def build_sessions(
    cache: Optional[FetchCache] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    settings: Optional[Settings] = None,
) -> Dict[SourceKind, SourceSession]:
    """One session client per source sharing a fetch cache and transport."""
    return {
        kind: cls(cache=cache, transport=transport, settings=settings)
        for kind, cls in SESSION_CLASSES.items()
    }


__all__ = [
    "SESSION_CLASSES",
    "build_sessions",
    "SessionMachine",
    "SourceSession",
    "TaxPortalSession",
    "ClerkSession",
    "RecorderSession",
    "GisSession",
]
