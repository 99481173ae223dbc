"""
Geographic helpers shared by the matcher, the radius allocator and the store.

Regions are shapely polygons in WGS84 (EPSG:4326) with coordinates given as
(longitude, latitude), the same axis order the store uses for containment.
"""

from math import radians, sin, cos, sqrt, atan2
from typing import Dict, Optional, Tuple

from shapely.geometry import Polygon

from .exceptions import InvalidInputError

EARTH_RADIUS_M = 6_371_000.0

# (south, west, north, east) in degrees
STATE_BOUNDS: Dict[str, Tuple[float, float, float, float]] = {
    "CO": (36.9, -109.0, 41.0, -102.0),
    "DE": (38.4, -75.8, 39.7, -75.0),
    "FL": (24.5, -87.6, 31.0, -80.0),
    "MD": (37.9, -79.5, 39.7, -75.0),
    "ME": (43.0, -71.0, 45.0, -69.0),
    "NJ": (38.9, -75.6, 41.4, -73.9),
    "NY": (40.5, -79.8, 45.0, -71.8),
    "OH": (38.4, -84.8, 42.0, -80.5),
    "SC": (32.0, -83.4, 35.2, -78.5),
    "TX": (25.8, -106.6, 36.5, -93.5),
    "VA": (36.5, -83.7, 39.5, -75.2),
}


def is_valid_lat_lon(latitude: Optional[float], longitude: Optional[float]) -> bool:
    """Return True when both coordinates are present and inside WGS84 range."""
    if latitude is None or longitude is None:
        return False
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        return False
    # NaN fails both comparisons
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two lat/lon points."""
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_M * c


def bounding_box(south: float, west: float, north: float, east: float) -> Polygon:
    """Build a rectangular region polygon from political-boundary bounds.

    Args:
        south: Minimum latitude
        west: Minimum longitude
        north: Maximum latitude
        east: Maximum longitude

    Returns:
        Closed polygon ring of (lon, lat) pairs

    Raises:
        InvalidInputError: If the bounds are out of range or inverted
    """
    if not (is_valid_lat_lon(south, west) and is_valid_lat_lon(north, east)):
        raise InvalidInputError(
            f"Bounding box out of range: south={south}, west={west}, north={north}, east={east}"
        )
    if south >= north or west >= east:
        raise InvalidInputError(
            f"Bounding box is empty or inverted: south={south}, west={west}, north={north}, east={east}"
        )

    return Polygon([
        (west, south),
        (east, south),
        (east, north),
        (west, north),
        (west, south),
    ])


def validate_region(region: object) -> Polygon:
    """Check that a region is a usable polygon and return it.

    Raises:
        InvalidInputError: If region is missing, not a Polygon, empty or invalid
    """
    if region is None:
        raise InvalidInputError("Region is required")
    if not isinstance(region, Polygon):
        raise InvalidInputError(f"Region must be a shapely Polygon, got {type(region).__name__}")
    if region.is_empty or not region.is_valid:
        raise InvalidInputError("Region polygon is empty or invalid")
    return region


def region_for_state(
    state_code: str,
    overrides: Optional[Dict[str, Tuple[float, float, float, float]]] = None,
) -> Polygon:
    """Look up the bounding region for a state code.

    Args:
        state_code: Two-letter state code (case-insensitive)
        overrides: Extra or replacement bounds, usually from configuration

    Raises:
        InvalidInputError: If no bounds are known for the state
    """
    code = (state_code or "").strip().upper()
    bounds = dict(STATE_BOUNDS)
    if overrides:
        bounds.update({k.upper(): tuple(v) for k, v in overrides.items()})

    if code not in bounds:
        raise InvalidInputError(f"No bounding box known for state '{state_code}'")

    south, west, north, east = bounds[code]
    return bounding_box(south, west, north, east)
