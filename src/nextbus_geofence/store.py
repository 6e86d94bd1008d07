"""Document store adapters.

The jobs depend only on the five operations of :class:`Store`:

    collection_exists   existence check by name
    create_collection   create with a geo index on one field
    bulk_upsert         ``$set``-merge documents by ``_id``, inserting if absent
    find_within         run a containment query with a result cap
    delete_all          match-all delete

MongoStore
    Production adapter over ``motor``.  Containment queries are native
    ``$geoWithin`` queries against a GeoJSON ``Point`` field.

MemoryStore
    In-process store evaluating the same query shape with
    :func:`~nextbus_geofence.geometry.point_in_ring`.  Used for dry runs and
    tests.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import UpdateOne
from pymongo.errors import BulkWriteError

from nextbus_geofence.config import StoreConfig
from nextbus_geofence.geometry import point_in_ring

logger = logging.getLogger(__name__)


@dataclass
class BulkResult:
    """Outcome of one bulk upsert call."""

    inserted: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.updated


class Store(Protocol):
    """Structural interface used by the writer, matcher and hit register."""

    async def collection_exists(self, name: str) -> bool:
        ...

    async def create_collection(self, name: str, geo_field: Optional[str] = None) -> None:
        ...

    async def bulk_upsert(self, name: str, docs: Iterable[dict[str, Any]]) -> BulkResult:
        ...

    async def find_within(self, name: str, query: dict[str, Any], limit: int) -> list[dict[str, Any]]:
        ...

    async def delete_all(self, name: str) -> int:
        ...


def _set_fields(doc: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in doc.items() if k != "_id"}


class MongoStore:
    """MongoDB adapter.

    Parameters
    ----------
    database:
        Motor database holding the location and hit collections.  Use
        :meth:`connect` to build one from a connection string.
    """

    def __init__(self, database: Any) -> None:
        self._db = database

    @classmethod
    def connect(cls, uri: str, database: str) -> "MongoStore":
        return cls(AsyncIOMotorClient(uri)[database])

    async def collection_exists(self, name: str) -> bool:
        return name in await self._db.list_collection_names()

    async def create_collection(self, name: str, geo_field: Optional[str] = None) -> None:
        await self._db.create_collection(name)
        if geo_field:
            await self._db[name].create_index([(geo_field, "2dsphere")])

    async def bulk_upsert(self, name: str, docs: Iterable[dict[str, Any]]) -> BulkResult:
        ops = [
            UpdateOne({"_id": doc["_id"]}, {"$set": _set_fields(doc)}, upsert=True)
            for doc in docs
        ]
        if not ops:
            return BulkResult()

        try:
            result = await self._db[name].bulk_write(ops, ordered=False)
        except BulkWriteError as exc:
            details = exc.details
            failed = len(details.get("writeErrors", []))
            logger.warning("Bulk upsert into %s: %d documents failed", name, failed)
            return BulkResult(
                inserted=details.get("nUpserted", 0),
                updated=details.get("nMatched", 0),
                failed=failed,
            )

        return BulkResult(inserted=result.upserted_count, updated=result.matched_count)

    async def find_within(self, name: str, query: dict[str, Any], limit: int) -> list[dict[str, Any]]:
        cursor = self._db[name].find(query).limit(limit)
        return await cursor.to_list(length=limit)

    async def delete_all(self, name: str) -> int:
        result = await self._db[name].delete_many({})
        return result.deleted_count

    def close(self) -> None:
        self._db.client.close()


class MemoryStore:
    """Dict-backed store with the same upsert and query semantics."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[Any, dict[str, Any]]] = {}

    def documents(self, name: str) -> list[dict[str, Any]]:
        """Return copies of every document in *name*, in insertion order."""
        return [copy.deepcopy(d) for d in self._collections.get(name, {}).values()]

    async def collection_exists(self, name: str) -> bool:
        return name in self._collections

    async def create_collection(self, name: str, geo_field: Optional[str] = None) -> None:
        self._collections.setdefault(name, {})

    async def bulk_upsert(self, name: str, docs: Iterable[dict[str, Any]]) -> BulkResult:
        collection = self._collections.setdefault(name, {})
        result = BulkResult()
        for doc in docs:
            existing = collection.get(doc["_id"])
            if existing is None:
                collection[doc["_id"]] = copy.deepcopy(doc)
                result.inserted += 1
            else:
                existing.update(copy.deepcopy(_set_fields(doc)))
                result.updated += 1
        return result

    async def find_within(self, name: str, query: dict[str, Any], limit: int) -> list[dict[str, Any]]:
        found = []
        for doc in self._collections.get(name, {}).values():
            if len(found) >= limit:
                break
            if _matches(doc, query):
                found.append(copy.deepcopy(doc))
        return found

    async def delete_all(self, name: str) -> int:
        collection = self._collections.get(name, {})
        count = len(collection)
        collection.clear()
        return count

    def close(self) -> None:
        """No-op for the in-memory store."""


# ── query evaluation for MemoryStore ────────────────────────────────


def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    if "$or" in query:
        return any(_matches(doc, sub) for sub in query["$or"])

    for field_name, condition in query.items():
        geometry = condition["$geoWithin"]["$geometry"]
        if not _point_within(doc.get(field_name), geometry):
            return False
    return True


def _point_within(point: Optional[dict[str, Any]], polygon: dict[str, Any]) -> bool:
    if not point or point.get("type") != "Point":
        return False
    lon, lat = point["coordinates"]
    outer = polygon["coordinates"][0]
    ring = [(p_lat, p_lon) for p_lon, p_lat in outer]
    return point_in_ring(lat, lon, ring)


def open_store(config: StoreConfig, backend: Optional[str] = None):
    """Build the adapter named by *backend* (default: ``config.backend``)."""
    backend = backend or config.backend
    if backend == "memory":
        return MemoryStore()
    if backend == "mongo":
        return MongoStore.connect(config.uri, config.database)
    raise ValueError(f"Unknown store backend: {backend!r}")


async def ensure_collections(store: Store, locations: str, hits: str) -> None:
    """Create the location and hit collections if they do not exist yet."""
    for name, geo_field in ((locations, "position"), (hits, None)):
        if await store.collection_exists(name):
            logger.debug("Collection %s already exists", name)
            continue
        await store.create_collection(name, geo_field)
        logger.info("Created collection %s", name)
