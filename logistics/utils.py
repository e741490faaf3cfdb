"""
Logistics Utilities
===================
Great-circle distance, coordinate checks and the map zoom / search
radius lookup used by the courier feed.
"""

import math
from typing import Optional, Tuple

Point = Tuple[float, float]


# ============================================
# CONFIGURATION CONSTANTS
# ============================================

# Earth radius in km
EARTH_RADIUS_KM = 6371.0

# Map zoom level -> search radius (km). Used both ways: a courier zooming
# the map changes the radius, a typed radius picks the zoom that shows it.
ZOOM_RADIUS_KM = {
    10: 40.0,
    11: 20.0,
    12: 10.0,
    13: 5.0,
    14: 2.5,
    15: 1.2,
    16: 0.6,
    17: 0.3,
}
MIN_ZOOM = min(ZOOM_RADIUS_KM)
MAX_ZOOM = max(ZOOM_RADIUS_KM)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


# ============================================
# DISTANCE CALCULATION
# ============================================

def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two GPS points.

    Args:
        lat1, lng1: Coordinates of the first point
        lat2, lng2: Coordinates of the second point

    Returns:
        Distance in kilometres. 0.0 when any input is missing or not finite.
    """
    if not all(_is_number(v) for v in (lat1, lng1, lat2, lng2)):
        return 0.0

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    )
    # Rounding can push ``a`` a hair past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_between(a: Optional[Point], b: Optional[Point]) -> float:
    """haversine_km over (lat, lng) pairs; 0.0 if either side is missing."""
    if not a or not b:
        return 0.0
    return haversine_km(a[0], a[1], b[0], b[1])


def is_valid_coordinate(lat, lng) -> bool:
    return _is_number(lat) and _is_number(lng) and -90 <= lat <= 90 and -180 <= lng <= 180


def bounding_box(center: Point, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Lat/lng window enclosing the circle around ``center``.

    Returns (min_lat, max_lat, min_lng, max_lng). Used as a coarse
    database pre-filter; the haversine check decides membership.
    """
    lat, lng = center
    lat_delta = math.degrees(radius_km / EARTH_RADIUS_KM)
    cos_lat = math.cos(math.radians(lat))
    if cos_lat < 1e-6 or lat_delta >= 90:
        lng_delta = 180.0
    else:
        lng_delta = min(180.0, lat_delta / cos_lat)
    return (
        max(-90.0, lat - lat_delta),
        min(90.0, lat + lat_delta),
        lng - lng_delta,
        lng + lng_delta,
    )


# ============================================
# ZOOM <-> RADIUS
# ============================================

def radius_for_zoom(zoom) -> float:
    """Search radius for a map zoom level, clamped to the table."""
    zoom = int(round(zoom))
    zoom = max(MIN_ZOOM, min(MAX_ZOOM, zoom))
    return ZOOM_RADIUS_KM[zoom]


def zoom_for_radius(radius_km: float) -> int:
    """Closest zoom whose radius still covers ``radius_km``."""
    for zoom in range(MAX_ZOOM, MIN_ZOOM - 1, -1):
        if ZOOM_RADIUS_KM[zoom] >= radius_km:
            return zoom
    return MIN_ZOOM
