"""Property data routes: per-source data, aggregation, raw pages, imagery."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, JSONResponse

from api.deps import google_service, pin_query, property_service, source_service
from core.logging_config import get_logger
from core.types import PropertyIdentifier, SourceKind
from services.aggregator import CachedPropertyService, envelope_status
from services.google_maps import GoogleMapsService
from services.sources import SourceService

router = APIRouter()
LOGGER = get_logger(__name__)


async def _source_response(
    service: CachedPropertyService,
    pin: PropertyIdentifier,
    kind: SourceKind,
    refresh: bool,
) -> JSONResponse:
    envelope = await service.get_source_envelope(pin, kind, force_refresh=refresh)
    return JSONResponse(status_code=envelope_status(envelope), content=envelope)


# =============================================================================
# Structured data
# =============================================================================


@router.get("/tax-portal-data")
async def tax_portal_data(
    pin: PropertyIdentifier = Depends(pin_query),
    refresh: bool = Query(False),
    service: CachedPropertyService = Depends(property_service),
) -> JSONResponse:
    return await _source_response(service, pin, SourceKind.TAX_PORTAL, refresh)


@router.get("/clerk-data")
async def clerk_data(
    pin: PropertyIdentifier = Depends(pin_query),
    refresh: bool = Query(False),
    service: CachedPropertyService = Depends(property_service),
) -> JSONResponse:
    return await _source_response(service, pin, SourceKind.CLERK, refresh)


@router.get("/recorder-data")
async def recorder_data(
    pin: PropertyIdentifier = Depends(pin_query),
    refresh: bool = Query(False),
    service: CachedPropertyService = Depends(property_service),
) -> JSONResponse:
    return await _source_response(service, pin, SourceKind.RECORDER, refresh)


@router.get("/cookviewer-data")
async def cookviewer_data(
    pin: PropertyIdentifier = Depends(pin_query),
    refresh: bool = Query(False),
    service: CachedPropertyService = Depends(property_service),
) -> JSONResponse:
    return await _source_response(service, pin, SourceKind.GIS, refresh)


@router.get("/property")
async def aggregated_property(
    pin: PropertyIdentifier = Depends(pin_query),
    service: CachedPropertyService = Depends(property_service),
) -> Dict[str, Any]:
    """All four sources; each slot succeeds or fails on its own."""
    sources = await service.fetch_aggregated(pin)
    return {"success": True, "pin": pin.value, "sources": sources}


# =============================================================================
# Raw cleaned pages
# =============================================================================


async def _raw_page(service: SourceService, pin: PropertyIdentifier, kind: SourceKind) -> HTMLResponse:
    document = await service.fetch_raw(pin, kind)
    return HTMLResponse(content=document.body)


@router.get("/tax-portal", response_class=HTMLResponse)
async def tax_portal_page(
    pin: PropertyIdentifier = Depends(pin_query),
    service: SourceService = Depends(source_service),
) -> HTMLResponse:
    return await _raw_page(service, pin, SourceKind.TAX_PORTAL)


@router.get("/county-clerk", response_class=HTMLResponse)
async def clerk_page(
    pin: PropertyIdentifier = Depends(pin_query),
    service: SourceService = Depends(source_service),
) -> HTMLResponse:
    return await _raw_page(service, pin, SourceKind.CLERK)


@router.get("/recorder", response_class=HTMLResponse)
async def recorder_page(
    pin: PropertyIdentifier = Depends(pin_query),
    service: SourceService = Depends(source_service),
) -> HTMLResponse:
    return await _raw_page(service, pin, SourceKind.RECORDER)


# =============================================================================
# Imagery and cache control
# =============================================================================


@router.get("/google-maps-data")
async def google_maps_data(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    google: GoogleMapsService = Depends(google_service),
) -> Dict[str, Any]:
    imagery = await google.get_imagery(lat, lon)
    return {"success": True, "data": imagery.to_dict()}


@router.post("/clear-cache")
async def clear_cache(
    pin: Optional[str] = Query(None),
    persistent: bool = Query(False),
    service: CachedPropertyService = Depends(property_service),
) -> Dict[str, Any]:
    """Clear cached fetches for one PIN, or everything when no PIN is given."""
    target = PropertyIdentifier.parse(pin) if pin else None
    cleared = service.clear_cache(target, persistent=persistent)
    LOGGER.info(f"Cache cleared for {target or 'all PINs'}", extra={"extra_data": cleared})
    return {"success": True, "pin": target.value if target else None, **cleared}
