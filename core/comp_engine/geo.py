"""
Geo utilities for the Comp Engine.

Point-in-polygon containment, polygon area and great-circle distance.
Coordinates are (longitude, latitude) pairs, GeoJSON order.

Malformed geometry never raises here: a bad polygon excludes the point
and has zero area. These results only feed an optional filter.

Boundary rule for containment: each edge is tested with a half-open
interval on its y-range, and a crossing is counted when the point lies
strictly left of the edge. A point is inside when the crossing count is
odd. For an axis-aligned square this puts the bottom and left edges
inside and the top and right edges outside.
"""

import logging
import math
from typing import Any, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# Earth radius in miles (haversine) and metres (area projection)
EARTH_RADIUS_MILES = 3959.0
EARTH_RADIUS_METRES = 6_371_008.8

SQ_METRES_PER_ACRE = 4046.8564224

Coordinate = Tuple[float, float]


# =============================================================================
# Geometry coercion
# =============================================================================

def _as_coordinate(value: Any) -> Optional[Coordinate]:
    """Read a (lng, lat) pair from a sequence or a lat/lng mapping."""
    if isinstance(value, Mapping):
        lng = value.get("lng", value.get("lon"))
        lat = value.get("lat")
        if not isinstance(lng, (int, float)) or not isinstance(lat, (int, float)):
            return None
        return float(lng), float(lat)
    if isinstance(value, (list, tuple)) and len(value) >= 2:
        x, y = value[0], value[1]
        if isinstance(x, (int, float)) and isinstance(y, (int, float)):
            return float(x), float(y)
    return None


def exterior_ring(polygon: Any) -> List[Coordinate]:
    """
    Extract the exterior ring from a polygon-like value.

    Accepts a GeoJSON Feature, a GeoJSON Polygon geometry, a list of
    rings or a bare ring. Returns an empty list for anything else.
    The closing point of a closed ring is dropped.
    """
    if isinstance(polygon, Mapping):
        if polygon.get("type") == "Feature":
            return exterior_ring(polygon.get("geometry"))
        if polygon.get("type") == "Polygon":
            return exterior_ring(polygon.get("coordinates"))
        return []

    if not isinstance(polygon, (list, tuple)) or not polygon:
        return []

    first = polygon[0]
    if _as_coordinate(first) is None and isinstance(first, (list, tuple)):
        # List of rings: exterior ring first
        ring_source = first
    else:
        ring_source = polygon

    ring = []
    for vertex in ring_source:
        coord = _as_coordinate(vertex)
        if coord is None:
            logger.debug("Malformed polygon vertex %r; geometry ignored", vertex)
            return []
        ring.append(coord)

    if len(ring) > 1 and ring[0] == ring[-1]:
        ring = ring[:-1]
    return ring


# =============================================================================
# Containment and area
# =============================================================================

def is_inside_polygon(polygon: Any, point: Any) -> bool:
    """
    Ray-casting containment test over the polygon's exterior ring.

    Args:
        polygon: GeoJSON Feature/Polygon, list of rings, or a ring
        point: (lng, lat) pair or mapping with lat and lng/lon

    Returns:
        True if the point is inside; False for rings with fewer than
        3 points or unreadable input.
    """
    coord = _as_coordinate(point)
    ring = exterior_ring(polygon)
    if coord is None or not ring_is_valid(ring):
        return False

    px, py = coord
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > py) != (yj > py):
            x_cross = (xj - xi) * (py - yi) / (yj - yi) + xi
            if px < x_cross:
                inside = not inside
        j = i
    return inside


def polygon_area_acres(polygon: Any) -> float:
    """
    Area of the exterior ring in acres.

    Degree coordinates are projected equirectangularly around the ring's
    mean latitude before the shoelace sum, which is accurate for
    neighbourhood-sized market polygons.
    """
    ring = exterior_ring(polygon)
    if not ring_is_valid(ring):
        return 0.0

    mean_lat = math.radians(sum(lat for _, lat in ring) / len(ring))
    scale_x = EARTH_RADIUS_METRES * math.cos(mean_lat)
    projected = [
        (math.radians(lng) * scale_x, math.radians(lat) * EARTH_RADIUS_METRES)
        for lng, lat in ring
    ]

    twice_area = 0.0
    for i in range(len(projected)):
        x1, y1 = projected[i]
        x2, y2 = projected[(i + 1) % len(projected)]
        twice_area += x1 * y2 - x2 * y1

    area_sq_metres = abs(twice_area) / 2
    if not math.isfinite(area_sq_metres):
        return 0.0
    return area_sq_metres / SQ_METRES_PER_ACRE


# =============================================================================
# Distance
# =============================================================================

def haversine_miles(
    lat1: float, lon1: float,
    lat2: float, lon2: float,
) -> float:
    """
    Calculate distance between two points in miles using Haversine formula.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in miles
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.asin(math.sqrt(a))

    return EARTH_RADIUS_MILES * c


def distance_miles(origin: Any, target: Any) -> float:
    """Distance between two points given as (lng, lat) pairs or lat/lng mappings."""
    a = _as_coordinate(origin)
    b = _as_coordinate(target)
    if a is None or b is None:
        raise ValueError("distance_miles requires two readable points")
    return haversine_miles(a[1], a[0], b[1], b[0])


# =============================================================================
# Normalisation helpers
# =============================================================================

def normalize_lng_lat(point: Mapping[str, Any]) -> dict:
    """Rename a `lon` field to `lng`, keeping every other field."""
    result = {k: v for k, v in point.items() if k != "lon"}
    result["lng"] = point.get("lng", point.get("lon"))
    return result


def ensure_feature_properties(feature: Mapping[str, Any]) -> dict:
    """Return a copy of a GeoJSON feature with a properties object."""
    result = dict(feature)
    if not isinstance(result.get("properties"), Mapping):
        result["properties"] = {}
    return result


def ring_is_valid(ring: Sequence[Coordinate]) -> bool:
    """At least three distinct vertices."""
    return len(set(ring)) >= 3
