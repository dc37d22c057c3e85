"""
test_distance.py — Tests for GeoPoint, Haversine distance and bounding boxes.

Covers:
    • GeoPoint validation (ranges, NaN, non-numbers)
    • Haversine: identity, symmetry, known city pairs
    • Bounding box pre-filter (containment, poles, antimeridian)

Run with:
    pytest tests/test_distance.py -v
"""

from __future__ import annotations

import math

import pytest

from crowdalert.core.errors import InvalidInputError
from crowdalert.spatial.distance import (
    EARTH_RADIUS_M,
    GeoPoint,
    bounding_box,
    distance_meters,
    within_bounding_box,
)

MUMBAI = GeoPoint(19.0760, 72.8777)
DELHI = GeoPoint(28.6139, 77.2090)
PUNE = GeoPoint(18.5204, 73.8567)

# One degree of latitude on the sphere used by distance_meters
METERS_PER_DEGREE_LAT = EARTH_RADIUS_M * math.pi / 180.0


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: GeoPoint
# ═══════════════════════════════════════════════════════════════════════════

class TestGeoPoint:
    """Validation and helpers on GeoPoint."""

    def test_valid_point(self):
        p = GeoPoint(19.0760, 72.8777)
        assert p.latitude == 19.0760
        assert p.longitude == 72.8777

    def test_boundaries_accepted(self):
        GeoPoint(90.0, 180.0)
        GeoPoint(-90.0, -180.0)

    @pytest.mark.parametrize("lat,lon", [
        (91.0, 0.0),
        (-90.5, 0.0),
        (0.0, 180.5),
        (0.0, -181.0),
    ])
    def test_out_of_range_rejected(self, lat, lon):
        with pytest.raises(InvalidInputError):
            GeoPoint(lat, lon)

    def test_nan_rejected(self):
        with pytest.raises(InvalidInputError) as exc:
            GeoPoint(float("nan"), 10.0)
        assert exc.value.details["field"] == "latitude"

    def test_string_rejected(self):
        with pytest.raises(InvalidInputError):
            GeoPoint("19.07", 72.87)  # type: ignore[arg-type]

    def test_to_dict_short_keys(self):
        assert MUMBAI.to_dict() == {"lat": 19.0760, "lon": 72.8777}

    def test_frozen(self):
        with pytest.raises(AttributeError):
            MUMBAI.latitude = 0.0  # type: ignore[misc]


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Haversine
# ═══════════════════════════════════════════════════════════════════════════

class TestDistanceMeters:
    """Great-circle distance in meters."""

    def test_same_point_is_exactly_zero(self):
        assert distance_meters(MUMBAI, GeoPoint(19.0760, 72.8777)) == 0.0

    def test_symmetric(self):
        assert distance_meters(MUMBAI, DELHI) == pytest.approx(distance_meters(DELHI, MUMBAI))

    def test_mumbai_delhi(self):
        d = distance_meters(MUMBAI, DELHI)
        assert 1_140_000 < d < 1_160_000

    def test_mumbai_pune(self):
        d = distance_meters(MUMBAI, PUNE)
        assert 115_000 < d < 125_000

    def test_one_degree_latitude(self):
        d = distance_meters(GeoPoint(0.0, 0.0), GeoPoint(1.0, 0.0))
        assert d == pytest.approx(METERS_PER_DEGREE_LAT, rel=1e-9)

    def test_antipodes_half_circumference(self):
        d = distance_meters(GeoPoint(0.0, 0.0), GeoPoint(0.0, 180.0))
        assert d == pytest.approx(math.pi * EARTH_RADIUS_M, rel=1e-9)

    def test_across_antimeridian_is_short(self):
        d = distance_meters(GeoPoint(0.0, 179.9), GeoPoint(0.0, -179.9))
        assert d < 25_000

    def test_non_negative(self):
        assert distance_meters(DELHI, PUNE) > 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Bounding box
# ═══════════════════════════════════════════════════════════════════════════

class TestBoundingBox:
    """Cheap pre-filter must never reject a point inside the circle."""

    def test_box_contains_centre(self):
        box = bounding_box(MUMBAI, 100_000)
        assert within_bounding_box(MUMBAI, box)

    def test_box_contains_point_just_inside_radius(self):
        inside = GeoPoint(MUMBAI.latitude + 99_000 / METERS_PER_DEGREE_LAT, MUMBAI.longitude)
        assert distance_meters(MUMBAI, inside) < 100_000
        assert within_bounding_box(inside, bounding_box(MUMBAI, 100_000))

    def test_box_rejects_far_point(self):
        assert not within_bounding_box(DELHI, bounding_box(MUMBAI, 100_000))

    def test_latitude_clamped_near_pole(self):
        min_lat, max_lat, _, _ = bounding_box(GeoPoint(89.9, 0.0), 100_000)
        assert max_lat == 90.0
        assert min_lat < 89.9

    def test_antimeridian_widens_longitude(self):
        centre = GeoPoint(0.0, 179.9)
        box = bounding_box(centre, 100_000)
        assert box[2] == -180.0 and box[3] == 180.0
        assert within_bounding_box(GeoPoint(0.0, -179.9), box)

    @pytest.mark.parametrize("centre_lat", [60.0, 80.0, -70.0])
    def test_box_keeps_high_latitude_tangent_point(self, centre_lat):
        radius = 100_000
        point = _inside_tangent_point(GeoPoint(centre_lat, 10.0), radius)
        assert distance_meters(GeoPoint(centre_lat, 10.0), point) <= radius
        assert within_bounding_box(point, bounding_box(GeoPoint(centre_lat, 10.0), radius))

    def test_circle_over_pole_keeps_all_longitudes(self):
        box = bounding_box(GeoPoint(89.5, 0.0), 100_000)
        assert box[2] == -180.0 and box[3] == 180.0
        assert within_bounding_box(GeoPoint(89.5, 180.0), box)


def _inside_tangent_point(centre: GeoPoint, radius_m: float) -> GeoPoint:
    """
    Point just inside the circle's easternmost extent.

    The tangent point of a small circle sits at latitude
    asin(sin φ / cos d) and longitude offset asin(sin d / cos φ);
    nudging west along that parallel keeps it inside the circle.
    """
    d = radius_m / EARTH_RADIUS_M
    lat = math.degrees(math.asin(math.sin(centre.lat_rad) / math.cos(d)))
    dlon = math.degrees(math.asin(math.sin(d) / math.cos(centre.lat_rad)))
    return GeoPoint(lat, centre.longitude + dlon - 1e-7)
