"""
distance.py — Geographic points and great-circle distance.

Provides:
    - GeoPoint value type with range validation
    - Haversine distance between two points, in **meters**
    - Bounding-box helper for cheap pre-filtering

Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where:
    φ  = latitude in radians
    λ  = longitude in radians
    R  = Earth's mean radius ≈ 6 371 008.8 m
    d  = great-circle distance in meters

Haversine on a sphere is accurate to ~0.5 %, which is ample against a
100 km alert radius.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from crowdalert.core.errors import InvalidInputError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M: float = 6_371_008.8  # IAU mean radius

# Slack on the pre-filter box so boundary points survive float rounding
_BOX_PAD_DEG: float = 1e-9


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GeoPoint:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not isinstance(self.latitude, (int, float)) or math.isnan(self.latitude):
            raise InvalidInputError(
                f"Latitude must be a number, got {self.latitude!r}", field="latitude",
            )
        if not isinstance(self.longitude, (int, float)) or math.isnan(self.longitude):
            raise InvalidInputError(
                f"Longitude must be a number, got {self.longitude!r}", field="longitude",
            )
        if not (-90.0 <= self.latitude <= 90.0):
            raise InvalidInputError(
                f"Latitude must be in [-90, 90], got {self.latitude}", field="latitude",
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise InvalidInputError(
                f"Longitude must be in [-180, 180], got {self.longitude}", field="longitude",
            )

    @property
    def lat_rad(self) -> float:
        """Latitude in radians."""
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        """Longitude in radians."""
        return math.radians(self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        """Short-key form used in prompts and API payloads."""
        return {"lat": self.latitude, "lon": self.longitude}


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """
    Great-circle distance between two points using the Haversine formula.

    Parameters
    ----------
    a, b : GeoPoint

    Returns
    -------
    float
        Distance in meters. Exactly 0.0 for identical points; symmetric.

    Examples
    --------
    >>> mumbai = GeoPoint(19.0760, 72.8777)
    >>> round(distance_meters(mumbai, mumbai), 1)
    0.0
    >>> 1_140_000 < distance_meters(mumbai, GeoPoint(28.6139, 77.2090)) < 1_160_000
    True
    """
    if a == b:
        return 0.0

    d_lat = b.lat_rad - a.lat_rad
    d_lon = b.lon_rad - a.lon_rad

    h = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(a.lat_rad) * math.cos(b.lat_rad) * math.sin(d_lon / 2.0) ** 2
    )
    # Clamp for floating-point drift near antipodes
    h = min(1.0, max(0.0, h))
    c = 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))

    return EARTH_RADIUS_M * c


def bounding_box(center: GeoPoint, radius_m: float) -> Tuple[float, float, float, float]:
    """
    Compute (min_lat, max_lat, min_lon, max_lon) enclosing a circle.

    The longitude half-width is the circle's true extent at its tangent
    points, asin(sin(d) / cos(φ)), which is wider than d / cos(φ) at high
    latitudes. When the circle reaches a pole, or the box crosses the
    antimeridian, the longitude span widens to the full range.
    """
    angular = radius_m / EARTH_RADIUS_M  # radians
    delta_lat = math.degrees(angular) + _BOX_PAD_DEG

    min_lat = center.latitude - delta_lat
    max_lat = center.latitude + delta_lat

    cos_lat = math.cos(center.lat_rad)
    sin_angular = math.sin(angular)
    if angular >= math.pi / 2 or sin_angular >= cos_lat or max_lat >= 90.0 or min_lat <= -90.0:
        delta_lon = 180.0
    else:
        delta_lon = math.degrees(math.asin(sin_angular / cos_lat)) + _BOX_PAD_DEG

    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    # Box crossing the antimeridian: keep every longitude
    if min_lon < -180.0 or max_lon > 180.0:
        min_lon, max_lon = -180.0, 180.0

    return (max(min_lat, -90.0), min(max_lat, 90.0), min_lon, max_lon)


def within_bounding_box(point: GeoPoint, box: Tuple[float, float, float, float]) -> bool:
    """Cheap rejection test before running Haversine."""
    min_lat, max_lat, min_lon, max_lon = box
    return min_lat <= point.latitude <= max_lat and min_lon <= point.longitude <= max_lon
