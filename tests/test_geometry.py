"""Tests for the geometry helpers."""

import pytest

from nextbus_geofence.geometry import close_ring, point_in_ring, ring_to_geojson

SQUARE = ((0.0, 0.0), (0.0, 10.0), (10.0, 10.0), (10.0, 0.0), (0.0, 0.0))

# Concave "L": the notch (5..10, 5..10) is outside.
L_SHAPE = close_ring([(0, 0), (0, 10), (5, 10), (5, 5), (10, 5), (10, 0)])


@pytest.mark.parametrize(
    "lat, lon, expected",
    [
        (5.0, 5.0, True),
        (0.0, 5.0, True),     # on an edge
        (10.0, 10.0, True),   # on a vertex
        (10.000001, 5.0, False),
        (-1.0, 5.0, False),
        (5.0, 11.0, False),
    ],
)
def test_square(lat: float, lon: float, expected: bool) -> None:
    assert point_in_ring(lat, lon, SQUARE) is expected


def test_concave_ring() -> None:
    assert point_in_ring(2.0, 8.0, L_SHAPE)
    assert point_in_ring(8.0, 2.0, L_SHAPE)
    assert not point_in_ring(8.0, 8.0, L_SHAPE)
    assert point_in_ring(5.0, 7.0, L_SHAPE)  # on the inner edge


def test_close_ring_appends_first_vertex() -> None:
    ring = close_ring([(1, 1), (1, 2), (2, 2)])
    assert ring[0] == ring[-1] == (1.0, 1.0)
    assert len(ring) == 4
    assert close_ring(ring) == ring


def test_close_ring_rejects_degenerate() -> None:
    with pytest.raises(ValueError):
        close_ring([(1, 1), (2, 2), (1, 1)])


def test_geojson_is_lon_lat_and_closed() -> None:
    geo = ring_to_geojson([(43.0, -79.0), (43.0, -78.0), (44.0, -78.0)])
    coords = geo["coordinates"][0]
    assert geo["type"] == "Polygon"
    assert coords[0] == [-79.0, 43.0]
    assert coords[0] == coords[-1]
