"""
Geographic helpers shared by discovery, the spot store and the spots router.

Distances are great-circle (haversine) distances in meters on a spherical Earth.
"""
import math
from typing import List, NamedTuple, Tuple

EARTH_RADIUS_METERS = 6371008.8

# Rough meters per degree of latitude, used for bounding-box prefilters.
METERS_PER_DEGREE = 111000.0


class BoundingBox(NamedTuple):
    """Latitude/longitude rectangle. ``min_lon > max_lon`` means it wraps the antimeridian."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.min_lon > self.max_lon

    def longitude_ranges(self) -> List[Tuple[float, float]]:
        """Return one or two plain ``(low, high)`` longitude ranges covering the box."""
        if self.crosses_antimeridian:
            return [(self.min_lon, 180.0), (-180.0, self.max_lon)]
        return [(self.min_lon, self.max_lon)]

    def contains(self, lat: float, lon: float) -> bool:
        if not self.min_lat <= lat <= self.max_lat:
            return False
        return any(low <= lon <= high for low, high in self.longitude_ranges())


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute haversine distance in meters."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def _wrap_longitude(lon: float) -> float:
    return ((lon + 180.0) % 360.0) - 180.0


def bounding_box(lat: float, lon: float, radius_meters: float) -> BoundingBox:
    """
    Build a lat/lon box that contains every point within ``radius_meters`` of the center.

    The box is a prefilter only; callers decide membership with ``haversine_meters``.
    """
    lat_span = radius_meters / METERS_PER_DEGREE
    min_lat = max(-90.0, lat - lat_span)
    max_lat = min(90.0, lat + lat_span)

    cos_lat = math.cos(math.radians(lat))
    if min_lat <= -90.0 or max_lat >= 90.0 or cos_lat < 1e-6:
        # Near a pole every longitude is in range.
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    lon_span = radius_meters / (METERS_PER_DEGREE * cos_lat)
    if lon_span >= 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    return BoundingBox(
        min_lat,
        max_lat,
        _wrap_longitude(lon - lon_span),
        _wrap_longitude(lon + lon_span),
    )


def normalize_key_part(text: str) -> str:
    return (text or "").strip().lower()


def composite_key(name: str, address: str) -> Tuple[str, str]:
    """Lowercased, whitespace-trimmed (name, address) pair used for exact dedup."""
    return normalize_key_part(name), normalize_key_part(address)
