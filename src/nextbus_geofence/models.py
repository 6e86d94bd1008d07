"""Dataclass models for vehicle locations, fences, and geofence hits.

Store documents use the feed's camelCase field names; the Python attributes
are snake_case.  Optional fields left as ``None`` are omitted from the stored
document so an upsert merges into, rather than blanks out, what is stored.
Fields the feed explicitly reported as unknown are listed in
``Location.unknown_fields`` and written as ``null`` so the stale value goes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from nextbus_geofence.geometry import point_to_geojson

# Marker stored on every hit document.  Only presence of a hit matters.
HIT_VALUE = 10


@dataclass(frozen=True)
class Location:
    """Latest known position of one vehicle."""

    vehicle_id: str
    lat: float
    lon: float
    secs_since_report: int
    observed_at_millis: int
    route_tag: Optional[str] = None
    dir_tag: Optional[str] = None
    predictable: Optional[bool] = None
    heading: Optional[int] = None
    speed_km_hr: Optional[int] = None
    # document field names the feed sent with its "unknown" marker
    unknown_fields: frozenset[str] = frozenset()

    def to_document(self) -> dict[str, Any]:
        """Return the store document, keyed by ``vehicleId``."""
        doc: dict[str, Any] = {
            "_id": self.vehicle_id,
            "vehicleId": self.vehicle_id,
            "position": point_to_geojson(self.lat, self.lon),
            "secsSinceReport": self.secs_since_report,
            "observedAtMillis": self.observed_at_millis,
        }
        optional = {
            "routeTag": self.route_tag,
            "dirTag": self.dir_tag,
            "predictable": self.predictable,
            "heading": self.heading,
            "speedKmHr": self.speed_km_hr,
        }
        doc.update({k: v for k, v in optional.items() if v is not None})
        doc.update({k: None for k in self.unknown_fields if k in optional})
        return doc


@dataclass(frozen=True)
class Hit:
    """A vehicle found inside at least one fence during the last alert cycle."""

    vehicle_id: str
    hit_value: int = HIT_VALUE

    def to_document(self) -> dict[str, Any]:
        return {
            "_id": self.vehicle_id,
            "vehicleId": self.vehicle_id,
            "hitValue": self.hit_value,
        }


@dataclass(frozen=True)
class Fence:
    """A named polygonal region.

    ``polygon`` is a closed ring of ``(lat, lon)`` pairs (first == last).
    """

    id: str
    name: str
    region: int
    polygon: tuple[tuple[float, float], ...]


@dataclass
class FeedSnapshot:
    """One decoded ``vehicleLocations`` response.

    ``vehicles`` holds the raw attribute maps exactly as the feed sent them
    (all values are strings).
    """

    last_time_millis: int
    vehicles: list[dict[str, str]] = field(default_factory=list)
