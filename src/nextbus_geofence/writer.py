"""Bulk upsert of location batches, keyed by vehicle id."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from nextbus_geofence.exceptions import WriteError
from nextbus_geofence.models import Location
from nextbus_geofence.store import Store

logger = logging.getLogger(__name__)


class LocationWriter:
    """Writes each ingest batch with one bulk call.

    Documents are merged with ``$set``, so fields missing from a
    :class:`Location` leave the stored values in place.
    """

    def __init__(self, store: Store, collection: str, timeout_seconds: float) -> None:
        self._store = store
        self._collection = collection
        self._timeout = timeout_seconds

    async def upsert_batch(self, locations: Sequence[Location]) -> int:
        """Upsert *locations* and return how many documents were written.

        Raises
        ------
        WriteError
            On store failure or timeout.  Per-document failures inside the
            bulk call are logged and do not raise.
        """
        if not locations:
            return 0

        docs = [loc.to_document() for loc in locations]
        try:
            result = await asyncio.wait_for(
                self._store.bulk_upsert(self._collection, docs),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise WriteError(
                f"Upsert into {self._collection} timed out after {self._timeout}s"
            ) from exc
        except Exception as exc:
            raise WriteError(f"Upsert into {self._collection} failed: {exc}") from exc

        if result.failed:
            logger.warning(
                "%d of %d location documents failed to write",
                result.failed,
                len(docs),
            )
        return result.written
