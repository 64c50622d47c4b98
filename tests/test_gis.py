"""Tests for parcel geometry math."""
from __future__ import annotations

import math

import pytest

from core.exceptions import SourceNotFoundError, SourceParseError
from parsers.gis import (
    MAP_HEIGHT,
    MAP_WIDTH,
    compute_bbox,
    extent,
    feature_rings,
    parse_gis,
    rings_to_lat_lon,
    web_mercator_to_lat_lon,
)

EARTH_RADIUS = 6378137.0


def reference_lat_lon(x: float, y: float) -> tuple[float, float]:
    """Gudermannian form of the inverse projection."""
    return math.degrees(math.atan(math.sinh(y / EARTH_RADIUS))), math.degrees(x / EARTH_RADIUS)


def square(cx: float, cy: float, w: float, h: float) -> list:
    x0, y0 = cx - w / 2, cy - h / 2
    return [[[x0, y0], [x0 + w, y0], [x0 + w, y0 + h], [x0, y0 + h], [x0, y0]]]


class TestWebMercator:
    def test_origin(self):
        lat, lon = web_mercator_to_lat_lon(0, 0)
        assert lat == pytest.approx(0, abs=1e-12)
        assert lon == pytest.approx(0, abs=1e-12)

    def test_chicago_reference_point(self):
        x, y = -9753977.0, 5182079.0
        lat, lon = web_mercator_to_lat_lon(x, y)
        expected_lat, expected_lon = reference_lat_lon(x, y)

        assert abs(lat - expected_lat) < 1e-4
        assert abs(lon - expected_lon) < 1e-4
        assert 42.1 < lat < 42.2
        assert -87.7 < lon < -87.6

    def test_rings_are_lat_lon_pairs(self):
        converted = rings_to_lat_lon([[[0.0, 0.0], [-9753977.0, 5182079.0]]])
        assert converted[0][0] == [pytest.approx(0), pytest.approx(0)]
        assert converted[0][1][0] > 42


class TestBoundingBox:
    def test_small_parcel_gets_minimum_padding_and_aspect(self):
        rings = square(-9753950.0, 5142040.0, 100, 80)
        bbox = compute_bbox(rings)

        assert bbox.width / bbox.height == pytest.approx(MAP_WIDTH / MAP_HEIGHT)
        assert bbox.center == pytest.approx((-9753950.0, 5142040.0))
        # 80 tall plus 50 each side sets the height; width follows the aspect
        assert bbox.height == pytest.approx(180)
        assert bbox.width == pytest.approx(240)

    def test_wide_parcel_grows_height(self):
        bbox = compute_bbox(square(0.0, 0.0, 1000, 100))

        assert bbox.width == pytest.approx(2000)
        assert bbox.height == pytest.approx(1500)

    def test_window_contains_parcel(self):
        rings = square(-9753950.0, 5142040.0, 300, 700)
        tight = extent(rings)
        bbox = compute_bbox(rings)

        assert bbox.xmin < tight.xmin and bbox.xmax > tight.xmax
        assert bbox.ymin < tight.ymin and bbox.ymax > tight.ymax

    def test_empty_rings_raise(self):
        with pytest.raises(SourceParseError):
            extent([[]])


class TestFeatureRings:
    def test_extra_coordinates_dropped(self):
        rings = feature_rings({"features": [{"geometry": {"rings": [[[1, 2, 0], [3, 4, 0]]]}}]})
        assert rings == [[[1.0, 2.0], [3.0, 4.0]]]

    def test_no_features_is_not_found(self):
        with pytest.raises(SourceNotFoundError):
            feature_rings({"features": []})

    def test_feature_without_rings(self):
        with pytest.raises(SourceParseError):
            feature_rings({"features": [{"geometry": {}}]})

    def test_payload_keeps_both_projections(self, pin):
        rings = square(-9753950.0, 5142040.0, 100, 80)
        payload = parse_gis({"feature": {"features": [{"geometry": {"rings": rings}}]}, "images": {}}, pin)

        assert payload.parcel_rings_web_mercator == rings
        assert len(payload.map_bbox) == 4
        assert payload.map_image is None
        assert payload.center_lat == pytest.approx(reference_lat_lon(-9753950.0, 5142040.0)[0], abs=1e-4)
