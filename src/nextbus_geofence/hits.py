"""Hit register: clear the hit collection, then write the new hit set.

The two phases are not transactional.  If the rebuild fails after the clear,
the hit collection stays empty until the next successful alert cycle, so the
hits never describe anything older than the last completed cycle.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from nextbus_geofence.exceptions import RegisterError
from nextbus_geofence.models import Hit
from nextbus_geofence.store import Store

logger = logging.getLogger(__name__)


class HitRegister:
    """Replaces the whole hit collection on every call."""

    def __init__(self, store: Store, collection: str, timeout_seconds: float) -> None:
        self._store = store
        self._collection = collection
        self._timeout = timeout_seconds

    async def replace_hits(self, hits: Sequence[Hit]) -> None:
        """Delete every stored hit, then upsert *hits*.

        Raises
        ------
        RegisterError
            With ``phase`` set to ``"clear"`` or ``"rebuild"``.
        """
        deleted = await self._run(
            "clear", self._store.delete_all(self._collection)
        )
        logger.debug("Cleared %d hits from %s", deleted, self._collection)

        if not hits:
            return

        docs = [hit.to_document() for hit in hits]
        result = await self._run(
            "rebuild", self._store.bulk_upsert(self._collection, docs)
        )
        if result.failed:
            logger.warning("%d of %d hit documents failed to write", result.failed, len(docs))

    async def _run(self, phase: str, operation):
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise RegisterError(
                f"Hit {phase} timed out after {self._timeout}s", phase=phase
            ) from exc
        except Exception as exc:
            raise RegisterError(f"Hit {phase} failed: {exc}", phase=phase) from exc
