"""Geospatial utilities (no external dependencies).

Every function here is pure and total: no I/O, no shared state, and the result for a
given input order is deterministic. Polygon helpers treat longitude as X and latitude
as Y; a ring's last vertex implicitly connects back to the first.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from territory_claim.models import EARTH_RADIUS_M, BoundingBox, GeoPoint


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in meters between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in meters.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def distance_m(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance between two GeoPoints."""

    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def path_length_m(points: Sequence[GeoPoint]) -> float:
    """Sum of consecutive great-circle distances (open path, no closing edge)."""

    total = 0.0
    for i in range(1, len(points)):
        total += distance_m(points[i - 1], points[i])
    return total


def bounding_box(points: Iterable[GeoPoint]) -> BoundingBox:
    """Min/max box of the points; all-zero box for empty input."""

    pts = list(points)
    if not pts:
        return BoundingBox(0.0, 0.0, 0.0, 0.0)
    lats = [p.latitude for p in pts]
    lons = [p.longitude for p in pts]
    return BoundingBox(min_lat=min(lats), max_lat=max(lats), min_lon=min(lons), max_lon=max(lons))


def point_in_polygon(point: GeoPoint, ring: Sequence[GeoPoint]) -> bool:
    """Even-odd ray casting test.

    Args:
        point: Point to test.
        ring: Polygon vertices (implicitly closed).

    Returns:
        True if the point is inside. Always False for rings with fewer than 3 vertices.
    """

    n = len(ring)
    if n < 3:
        return False

    x = point.longitude
    y = point.latitude
    inside = False
    j = n - 1
    for i in range(n):
        xi = ring[i].longitude
        yi = ring[i].latitude
        xj = ring[j].longitude
        yj = ring[j].latitude
        # (yi > y) != (yj > y) guarantees yj != yi, so the division is safe
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def _ccw(a: GeoPoint, b: GeoPoint, c: GeoPoint) -> bool:
    return (c.latitude - a.latitude) * (b.longitude - a.longitude) > (b.latitude - a.latitude) * (
        c.longitude - a.longitude
    )


def segments_intersect(a1: GeoPoint, a2: GeoPoint, b1: GeoPoint, b2: GeoPoint) -> bool:
    """Proper-crossing test for segments a1-a2 and b1-b2 (orientation method).

    Collinear segments never count as crossing. Segments sharing an endpoint are not
    reliably classified, so callers must skip adjacent segments themselves.
    """

    return _ccw(a1, b1, b2) != _ccw(a2, b1, b2) and _ccw(a1, a2, b1) != _ccw(a1, a2, b2)


def has_self_intersection(path: Sequence[GeoPoint]) -> bool:
    """Check whether a path, closed back to its start, crosses itself.

    The path is read as n-1 open segments plus the implicit closing segment from the
    last point back to the first. Every non-adjacent pair of open segments is tested,
    then the closing segment is tested against every open segment except the first and
    the last (those share an endpoint with it).

    Returns:
        True on the first crossing found. Paths with fewer than 4 points never
        self-intersect.
    """

    n = len(path)
    if n < 4:
        return False

    segments = n - 1
    for i in range(segments):
        for j in range(i + 2, segments):
            if segments_intersect(path[i], path[i + 1], path[j], path[j + 1]):
                return True

    closing_start = path[n - 1]
    closing_end = path[0]
    for k in range(1, segments - 1):
        if segments_intersect(closing_start, closing_end, path[k], path[k + 1]):
            return True
    return False


def _sign(value: float) -> float:
    if value > 0:
        return 1.0
    if value < 0:
        return -1.0
    return 0.0


def project_local(ring: Sequence[GeoPoint]) -> list[tuple[float, float]]:
    """Project points to a planar (x, y) frame in meters around the ring's centroid.

    The centroid is the arithmetic mean of vertex coordinates. Each axis offset is the
    great-circle distance along that axis, signed by direction (east/north positive).
    """

    if not ring:
        return []
    n = len(ring)
    center_lat = sum(p.latitude for p in ring) / n
    center_lon = sum(p.longitude for p in ring) / n

    out: list[tuple[float, float]] = []
    for p in ring:
        x = haversine_m(center_lat, center_lon, center_lat, p.longitude) * _sign(p.longitude - center_lon)
        y = haversine_m(center_lat, center_lon, p.latitude, center_lon) * _sign(p.latitude - center_lat)
        out.append((x, y))
    return out


def polygon_area_sq_m(ring: Sequence[GeoPoint]) -> float:
    """Planar-projected polygon area in square meters (shoelace formula).

    Returns:
        Absolute area; 0.0 for rings with fewer than 3 vertices.
    """

    n = len(ring)
    if n < 3:
        return 0.0

    xy = project_local(ring)
    acc = 0.0
    for i in range(n):
        x_i, y_i = xy[i]
        x_next, y_next = xy[(i + 1) % n]
        acc += x_i * y_next - x_next * y_i
    return abs(acc) / 2.0
