"""Planar polygon helpers and GeoJSON conversion.

Rings are sequences of ``(lat, lon)`` pairs.  GeoJSON wants ``[lon, lat]``
and a closed ring, which :func:`ring_to_geojson` takes care of.
"""

from __future__ import annotations

from typing import Any, Sequence

# Tolerance for treating a point as lying on a ring edge.
EDGE_EPSILON = 1e-12

LatLon = tuple[float, float]


def point_to_geojson(lat: float, lon: float) -> dict[str, Any]:
    """Return a GeoJSON ``Point`` for *lat*/*lon*."""
    return {"type": "Point", "coordinates": [lon, lat]}


def close_ring(ring: Sequence[Sequence[float]]) -> tuple[LatLon, ...]:
    """Return *ring* as a tuple of ``(lat, lon)`` with first == last.

    Raises
    ------
    ValueError
        If the ring has fewer than three distinct vertices.
    """
    points = tuple((float(lat), float(lon)) for lat, lon in ring)
    if points and points[0] != points[-1]:
        points = points + (points[0],)
    if len(set(points)) < 3:
        raise ValueError("Polygon ring needs at least 3 distinct vertices")
    return points


def ring_to_geojson(ring: Sequence[LatLon]) -> dict[str, Any]:
    """Return a GeoJSON ``Polygon`` with *ring* as its only (outer) ring."""
    closed = close_ring(ring)
    return {
        "type": "Polygon",
        "coordinates": [[[lon, lat] for lat, lon in closed]],
    }


def point_in_ring(lat: float, lon: float, ring: Sequence[LatLon]) -> bool:
    """Ray-casting containment test; points on an edge count as inside."""
    if len(ring) < 3:
        return False

    n = len(ring)
    inside = False
    for i in range(n):
        y1, x1 = ring[i]
        y2, x2 = ring[(i + 1) % n]

        if _on_segment(lon, lat, x1, y1, x2, y2):
            return True

        if (y1 > lat) != (y2 > lat):
            x_at_y = x1 + (lat - y1) * (x2 - x1) / (y2 - y1)
            if x_at_y > lon:
                inside = not inside

    return inside


def _on_segment(
    x: float, y: float, x1: float, y1: float, x2: float, y2: float
) -> bool:
    cross = (x - x1) * (y2 - y1) - (y - y1) * (x2 - x1)
    if abs(cross) > EDGE_EPSILON:
        return False
    return min(x1, x2) <= x <= max(x1, x2) and min(y1, y2) <= y <= max(y1, y2)
