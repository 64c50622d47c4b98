"""Cook County GIS parcel session client.

No form protocol here: one ArcGIS feature query for the parcel polygon,
then tile exports for the computed map window.
"""
from __future__ import annotations

import asyncio
import enum
from typing import Any, Dict, FrozenSet, Mapping, Optional
from urllib.parse import urlencode

import httpx

from core.exceptions import SourceParseError
from core.logging_config import get_logger
from core.types import PropertyIdentifier, SourceDocument, SourceKind
from parsers.gis import MAP_HEIGHT, MAP_WIDTH, BoundingBox, compute_bbox, feature_rings, web_mercator_to_lat_lon
from scrapers.base import SessionMachine, SourceSession
from services.google_maps import GoogleMapsService, fetch_image_data_uri

LOGGER = get_logger(__name__)

WEB_MERCATOR = "3857"
PARCEL_OVERLAY_LAYER = "show:44"

# Export endpoints return tiny blank images for windows they cannot render
MIN_TILE_BYTES = 100


class GisState(enum.Enum):
    INIT = "init"
    FEATURE_LOADED = "feature_loaded"
    IMAGERY_LOADED = "imagery_loaded"
    DONE = "done"


GIS_TRANSITIONS: Mapping[GisState, FrozenSet[GisState]] = {
    GisState.INIT: frozenset({GisState.FEATURE_LOADED}),
    GisState.FEATURE_LOADED: frozenset({GisState.IMAGERY_LOADED}),
    GisState.IMAGERY_LOADED: frozenset({GisState.DONE}),
    GisState.DONE: frozenset(),
}


class GisSession(SourceSession[GisState]):
    """Session client for the county parcel layer and map tiles."""

    kind = SourceKind.GIS
    state_enum = GisState
    transitions = GIS_TRANSITIONS
    initial_state = GisState.INIT

    def __init__(self, *args, google: Optional[GoogleMapsService] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.google = google if google is not None else GoogleMapsService(
            transport=self._transport
        )

    @property
    def timeout(self) -> float:
        return float(self.settings.gis_request_timeout)

    def feature_query_url(self, pin: PropertyIdentifier) -> str:
        params = {
            "where": f"name='{pin.digits}'",
            "outFields": "name",
            "returnGeometry": "true",
            "outSR": WEB_MERCATOR,
            "f": "json",
            "resultRecordCount": 1,
        }
        return f"{self.settings.gis_parcel_query_url}?{urlencode(params)}"

    def imagery_url(self, bbox: BoundingBox) -> str:
        params = {
            "bbox": bbox.as_param(),
            "bboxSR": WEB_MERCATOR,
            "imageSR": WEB_MERCATOR,
            "size": f"{MAP_WIDTH},{MAP_HEIGHT}",
            "format": "jpg",
            "f": "image",
        }
        return f"{self.settings.gis_imagery_export_url}?{urlencode(params)}"

    def overlay_url(self, bbox: BoundingBox) -> str:
        params = {
            "bbox": bbox.as_param(),
            "bboxSR": WEB_MERCATOR,
            "imageSR": WEB_MERCATOR,
            "size": f"{MAP_WIDTH},{MAP_HEIGHT}",
            "format": "png",
            "transparent": "true",
            "f": "image",
            "layers": PARCEL_OVERLAY_LAYER,
        }
        return f"{self.settings.gis_overlay_export_url}?{urlencode(params)}"

    async def _run(
        self,
        client: httpx.AsyncClient,
        machine: SessionMachine,
        pin: PropertyIdentifier,
    ) -> SourceDocument:
        query_url = self.feature_query_url(pin)
        response = await self._get(client, query_url, "query_parcel")
        try:
            feature_json: Dict[str, Any] = response.json()
        except ValueError as e:
            raise SourceParseError("GIS parcel query returned invalid JSON") from e
        if "error" in feature_json:
            raise SourceParseError(f"GIS parcel query failed: {feature_json['error']}")

        rings = feature_rings(feature_json)
        machine.advance(GisState.FEATURE_LOADED)

        bbox = compute_bbox(rings)
        center_lat, center_lon = web_mercator_to_lat_lon(*bbox.center)
        map_image, parcel_overlay, google = await asyncio.gather(
            fetch_image_data_uri(
                client, self.imagery_url(bbox), default_mime="image/jpeg",
                min_bytes=MIN_TILE_BYTES, service=self.kind.value, operation="export_imagery",
            ),
            fetch_image_data_uri(
                client, self.overlay_url(bbox), default_mime="image/png",
                min_bytes=MIN_TILE_BYTES, service=self.kind.value, operation="export_overlay",
            ),
            self.google.fetch_imagery(client, center_lat, center_lon),
        )
        machine.advance(GisState.IMAGERY_LOADED)

        images = {
            "map_image": map_image,
            "parcel_overlay": parcel_overlay,
            **google.to_dict(),
        }
        machine.advance(GisState.DONE)
        return self._document(pin, {"feature": feature_json, "images": images}, query_url)


__all__ = ["GisState", "GIS_TRANSITIONS", "GisSession"]
