"""Tests for the geofence matcher."""

import random

import pytest

from nextbus_geofence.exceptions import MatchError
from nextbus_geofence.geofence import MATCH_LIMIT, GeofenceMatcher, build_fence_query
from nextbus_geofence.geometry import close_ring
from nextbus_geofence.models import HIT_VALUE, Fence, Location

SQUARE = Fence("sq", "Square", 1, close_ring([(0, 0), (0, 4), (4, 4), (4, 0)]))
TRIANGLE = Fence("tri", "Triangle", 2, close_ring([(6, 6), (6, 10), (10, 6)]))
NOTCHED = Fence("l", "L", 3, close_ring([(0, 6), (0, 10), (4, 10), (4, 8), (2, 8), (2, 6)]))


def _oracle(lat: float, lon: float, ring) -> bool:
    """Winding-number reference, boundary inclusive."""
    winding = 0
    for (y1, x1), (y2, x2) in zip(ring, ring[1:]):
        cross = (x2 - x1) * (lat - y1) - (lon - x1) * (y2 - y1)
        if cross == 0 and min(x1, x2) <= lon <= max(x1, x2) and min(y1, y2) <= lat <= max(y1, y2):
            return True
        if y1 <= lat < y2 and cross > 0:
            winding += 1
        elif y2 <= lat < y1 and cross < 0:
            winding -= 1
    return winding != 0


async def _seed(store, points) -> None:
    docs = [
        Location(f"v{i}", lat, lon, 0, 1000).to_document()
        for i, (lat, lon) in enumerate(points)
    ]
    await store.bulk_upsert("locations", docs)


def test_query_has_one_predicate_per_fence() -> None:
    query = build_fence_query([SQUARE, TRIANGLE])
    assert len(query["$or"]) == 2
    geometry = query["$or"][0]["position"]["$geoWithin"]["$geometry"]
    ring = geometry["coordinates"][0]
    assert geometry["type"] == "Polygon"
    assert ring[0] == ring[-1]
    assert ring[1] == [4.0, 0.0]  # lon, lat


@pytest.mark.asyncio
async def test_matches_agree_with_reference(store) -> None:
    """Every grid point, boundaries included, matches iff the oracle says so."""
    fences = [SQUARE, TRIANGLE, NOTCHED]
    points = [(lat / 2, lon / 2) for lat in range(-2, 23) for lon in range(-2, 23)]
    await _seed(store, points)

    hits = await GeofenceMatcher(store, "locations", 1).match_fences(fences)

    matched = {h.vehicle_id for h in hits}
    expected = {
        f"v{i}"
        for i, (lat, lon) in enumerate(points)
        if any(_oracle(lat, lon, f.polygon) for f in fences)
    }
    assert matched == expected
    assert expected  # sanity: the grid overlaps the fences


@pytest.mark.asyncio
async def test_random_points_agree_with_reference(store) -> None:
    rng = random.Random(7)
    points = [(rng.uniform(-1, 11), rng.uniform(-1, 11)) for _ in range(300)]
    await _seed(store, points)

    hits = await GeofenceMatcher(store, "locations", 1).match_fences([SQUARE, TRIANGLE, NOTCHED])

    expected = {
        f"v{i}" for i, (lat, lon) in enumerate(points)
        if any(_oracle(lat, lon, f.polygon) for f in (SQUARE, TRIANGLE, NOTCHED))
    }
    assert {h.vehicle_id for h in hits} == expected


@pytest.mark.asyncio
async def test_vehicle_in_overlapping_fences_hits_once(store) -> None:
    overlap = Fence("big", "Big", 1, close_ring([(-1, -1), (-1, 5), (5, 5), (5, -1)]))
    await _seed(store, [(2, 2)])

    hits = await GeofenceMatcher(store, "locations", 1).match_fences([SQUARE, overlap])

    assert [(h.vehicle_id, h.hit_value) for h in hits] == [("v0", HIT_VALUE)]


@pytest.mark.asyncio
async def test_no_fences_means_no_query(store) -> None:
    assert await GeofenceMatcher(store, "locations", 1).match_fences([]) == []
    assert store.calls == []


@pytest.mark.asyncio
async def test_results_are_capped(store) -> None:
    await _seed(store, [(1.0, 1.0)] * (MATCH_LIMIT + 5))
    hits = await GeofenceMatcher(store, "locations", 1).match_fences([SQUARE])
    assert len(hits) == MATCH_LIMIT


@pytest.mark.asyncio
async def test_matcher_is_read_only(store) -> None:
    await _seed(store, [(1, 1), (50, 50)])
    before = store.documents("locations")
    await GeofenceMatcher(store, "locations", 1).match_fences([SQUARE])
    assert store.documents("locations") == before


@pytest.mark.asyncio
async def test_query_failure_raises_match_error(store) -> None:
    store.fail.add("find_within")
    with pytest.raises(MatchError):
        await GeofenceMatcher(store, "locations", 1).match_fences([SQUARE])
