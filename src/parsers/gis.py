"""Parcel geometry math and the GIS payload.

Parcel rings arrive in Web Mercator (EPSG:3857). They are carried in that
projection for drawing over the exported tiles and in latitude/longitude
for everything else.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.exceptions import SourceNotFoundError, SourceParseError
from core.types import PropertyIdentifier

# Half the projected width of the world in EPSG:3857 metres
ORIGIN_SHIFT = 20037508.34

MAP_WIDTH = 400
MAP_HEIGHT = 300
MIN_PADDING = 50.0
PADDING_RATIO = 0.5

Ring = List[List[float]]


def web_mercator_to_lat_lon(x: float, y: float) -> Tuple[float, float]:
    """
    Inverse Web Mercator for one vertex.

    Returns:
        ``(latitude, longitude)`` in degrees.
    """
    lon = x / ORIGIN_SHIFT * 180
    lat = y / ORIGIN_SHIFT * 180
    lat = 180 / math.pi * (2 * math.atan(math.exp(lat * math.pi / 180)) - math.pi / 2)
    return lat, lon


@dataclass(frozen=True)
class BoundingBox:
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def center(self) -> Tuple[float, float]:
        return (self.xmin + self.xmax) / 2, (self.ymin + self.ymax) / 2

    def as_param(self) -> str:
        return f"{self.xmin},{self.ymin},{self.xmax},{self.ymax}"

    def to_list(self) -> List[float]:
        return [self.xmin, self.ymin, self.xmax, self.ymax]


def extent(rings: Sequence[Sequence[Sequence[float]]]) -> BoundingBox:
    """Tight extent of every vertex in every ring."""
    xs = [point[0] for ring in rings for point in ring]
    ys = [point[1] for ring in rings for point in ring]
    if not xs:
        raise SourceParseError("Parcel geometry has no vertices")
    return BoundingBox(min(xs), min(ys), max(xs), max(ys))


def compute_bbox(
    rings: Sequence[Sequence[Sequence[float]]],
    width: int = MAP_WIDTH,
    height: int = MAP_HEIGHT,
) -> BoundingBox:
    """
    Map window around a parcel.

    Each axis is padded on both sides by half its extent, but by at least
    50 projected units, then the shorter side is grown until the window
    matches the image aspect ratio. The window stays centred on the parcel.
    """
    tight = extent(rings)
    d_x, d_y = tight.width, tight.height
    pad_x = max(d_x * PADDING_RATIO, MIN_PADDING)
    pad_y = max(d_y * PADDING_RATIO, MIN_PADDING)

    half_w = d_x / 2 + pad_x
    half_h = d_y / 2 + pad_y
    aspect = width / height
    if half_w / half_h > aspect:
        half_h = half_w / aspect
    else:
        half_w = half_h * aspect

    cx, cy = tight.center
    return BoundingBox(cx - half_w, cy - half_h, cx + half_w, cy + half_h)


def rings_to_lat_lon(rings: Sequence[Sequence[Sequence[float]]]) -> List[Ring]:
    converted: List[Ring] = []
    for ring in rings:
        converted_ring = []
        for point in ring:
            lat, lon = web_mercator_to_lat_lon(point[0], point[1])
            converted_ring.append([lat, lon])
        converted.append(converted_ring)
    return converted


def feature_rings(feature_json: Dict[str, Any]) -> List[Ring]:
    """
    Rings of the first feature in an ArcGIS query response.

    Raises:
        SourceNotFoundError: The query matched no parcel.
        SourceParseError: The feature has no polygon rings.
    """
    features = feature_json.get("features") or []
    if not features:
        raise SourceNotFoundError("No parcel found")
    geometry = features[0].get("geometry") or {}
    rings = geometry.get("rings")
    if not rings:
        raise SourceParseError("Parcel feature has no polygon geometry")
    return [[[float(x), float(y)] for x, y, *_ in ring] for ring in rings]


@dataclass
class GisPayload:
    """Parcel geometry and map imagery."""

    map_image: Optional[str] = None
    parcel_overlay: Optional[str] = None
    center_lat: Optional[float] = None
    center_lon: Optional[float] = None
    parcel_rings: List[Ring] = field(default_factory=list)
    parcel_rings_web_mercator: List[Ring] = field(default_factory=list)
    map_bbox: List[float] = field(default_factory=list)
    map_width: int = MAP_WIDTH
    map_height: int = MAP_HEIGHT
    google_satellite: Optional[str] = None
    google_street_view: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "map_image": self.map_image,
            "parcel_overlay": self.parcel_overlay,
            "center_lat": self.center_lat,
            "center_lon": self.center_lon,
            "parcel_rings": self.parcel_rings,
            "parcel_rings_web_mercator": self.parcel_rings_web_mercator,
            "map_bbox": self.map_bbox,
            "map_width": self.map_width,
            "map_height": self.map_height,
            "google_satellite": self.google_satellite,
            "google_street_view": self.google_street_view,
        }


def parse_gis(body: Dict[str, Any], pin: PropertyIdentifier) -> GisPayload:
    """
    Build the GIS payload from the session's feature response and images.

    ``body`` holds ``feature`` (the ArcGIS JSON) and ``images`` (data URIs
    keyed by payload field name).
    """
    rings = feature_rings(body.get("feature") or {})
    bbox = compute_bbox(rings)
    center_x, center_y = bbox.center
    center_lat, center_lon = web_mercator_to_lat_lon(center_x, center_y)
    images = body.get("images") or {}
    return GisPayload(
        map_image=images.get("map_image"),
        parcel_overlay=images.get("parcel_overlay"),
        center_lat=center_lat,
        center_lon=center_lon,
        parcel_rings=rings_to_lat_lon(rings),
        parcel_rings_web_mercator=rings,
        map_bbox=bbox.to_list(),
        google_satellite=images.get("google_satellite"),
        google_street_view=images.get("google_street_view"),
    )


__all__ = [
    "ORIGIN_SHIFT",
    "MAP_WIDTH",
    "MAP_HEIGHT",
    "BoundingBox",
    "GisPayload",
    "web_mercator_to_lat_lon",
    "compute_bbox",
    "extent",
    "feature_rings",
    "rings_to_lat_lon",
    "parse_gis",
]
