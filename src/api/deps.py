"""Service dependencies for FastAPI routes.

Routes receive services through ``Depends`` so tests can swap them with
``app.dependency_overrides``.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Query

from core.types import PropertyIdentifier
from services.aggregator import CachedPropertyService, get_property_service
from services.bids import BidService
from services.google_maps import GoogleMapsService, get_google_maps_service
from services.import_jobs import ImportJobService
from services.sources import SourceService


def property_service() -> CachedPropertyService:
    return get_property_service()


def source_service() -> SourceService:
    return get_property_service().sources


def google_service() -> GoogleMapsService:
    return get_google_maps_service()


def import_service() -> ImportJobService:
    return ImportJobService(property_service=get_property_service())


def bid_service() -> BidService:
    return BidService()


def pin_query(pin: Optional[str] = Query(None, description="PIN as XX-XX-XXX-XXX-XXXX")) -> PropertyIdentifier:
    """Validated ``?pin=`` parameter. Raises PinValidationError before any I/O."""
    return PropertyIdentifier.parse(pin)


__all__ = [
    "bid_service",
    "google_service",
    "import_service",
    "pin_query",
    "property_service",
    "source_service",
]
