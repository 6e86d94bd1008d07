"""Geofence matching against the location store.

Each fence becomes one ``$geoWithin`` predicate on the ``position`` field;
the predicates are OR-ed and sent as a single capped query::

    {"$or": [
        {"position": {"$geoWithin": {"$geometry": <fence 1 Polygon>}}},
        {"position": {"$geoWithin": {"$geometry": <fence 2 Polygon>}}},
        ...
    ]}

A vehicle inside any fence yields exactly one :class:`Hit`.  Results beyond
:data:`MATCH_LIMIT` are dropped by the store.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from nextbus_geofence.exceptions import MatchError
from nextbus_geofence.geometry import ring_to_geojson
from nextbus_geofence.models import Fence, Hit
from nextbus_geofence.store import Store

logger = logging.getLogger(__name__)

MATCH_LIMIT = 1000

POSITION_FIELD = "position"


def build_fence_query(fences: Sequence[Fence]) -> dict[str, Any]:
    """Return the OR of one containment predicate per fence."""
    return {
        "$or": [
            {POSITION_FIELD: {"$geoWithin": {"$geometry": ring_to_geojson(f.polygon)}}}
            for f in fences
        ]
    }


class GeofenceMatcher:
    """Read-only query for vehicles currently inside any fence."""

    def __init__(self, store: Store, collection: str, timeout_seconds: float) -> None:
        self._store = store
        self._collection = collection
        self._timeout = timeout_seconds

    async def match_fences(self, fences: Sequence[Fence]) -> list[Hit]:
        """Return one :class:`Hit` per stored location inside any of *fences*.

        Raises
        ------
        MatchError
            If the query fails or times out.
        """
        if not fences:
            return []

        query = build_fence_query(fences)
        try:
            docs = await asyncio.wait_for(
                self._store.find_within(self._collection, query, MATCH_LIMIT),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise MatchError(f"Fence query timed out after {self._timeout}s") from exc
        except Exception as exc:
            raise MatchError(f"Fence query failed: {exc}") from exc

        if len(docs) >= MATCH_LIMIT:
            logger.debug("Fence query hit the %d result cap", MATCH_LIMIT)

        hits: dict[str, Hit] = {}
        for doc in docs:
            vehicle_id = doc.get("vehicleId", doc.get("_id"))
            if vehicle_id is not None:
                hits.setdefault(str(vehicle_id), Hit(vehicle_id=str(vehicle_id)))
        return list(hits.values())
