"""The two scheduled units of work.

    IngestJob:  fetch(cursor) → advance cursor → transform → upsert
    AlertJob:   match fences → replace hits

The jobs never call each other and share nothing but the store.  Each tick
is independent: taxonomy errors are logged and the tick returns, so a
scheduler can keep firing indefinitely.  Ticks of the same job may overlap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from nextbus_geofence.exceptions import FetchError, MatchError, RegisterError, WriteError
from nextbus_geofence.fetcher import CursorFetcher
from nextbus_geofence.geofence import GeofenceMatcher
from nextbus_geofence.hits import HitRegister
from nextbus_geofence.models import Fence
from nextbus_geofence.transform import transform_batch
from nextbus_geofence.writer import LocationWriter

logger = logging.getLogger(__name__)


@dataclass
class CursorState:
    """Feed cursor owned by one :class:`IngestJob`.

    ``0`` asks the feed for its full current snapshot.  Not persisted.
    """

    last_time_millis: int = 0


class IngestJob:
    """Fetch → transform → upsert, one feed request per tick."""

    def __init__(
        self,
        fetcher: CursorFetcher,
        writer: LocationWriter,
        state: CursorState | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._writer = writer
        self.state = state or CursorState()
        self.consecutive_failures = 0

    async def run_once(self) -> int:
        """Run one ingest tick and return the number of locations written."""
        cursor = self.state.last_time_millis
        try:
            raw_batch, new_cursor = await self._fetcher.fetch(cursor)
        except FetchError as exc:
            self._failed("Fetch at cursor %d failed: %s", cursor, exc)
            return 0

        # Advance before writing: a failed write is not retried.
        self.state.last_time_millis = max(self.state.last_time_millis, new_cursor)

        locations = transform_batch(raw_batch, new_cursor)
        try:
            written = await self._writer.upsert_batch(locations)
        except WriteError as exc:
            self._failed("Dropped %d locations: %s", len(locations), exc)
            return 0

        self.consecutive_failures = 0
        logger.info(
            "Ingested %d of %d vehicles (cursor=%d)",
            written,
            len(raw_batch),
            self.state.last_time_millis,
        )
        return written

    def _failed(self, msg: str, *args) -> None:
        self.consecutive_failures += 1
        logger.warning(
            msg + " (consecutive failures: %d)", *args, self.consecutive_failures
        )


class AlertJob:
    """Match fences → replace hits, full recompute every tick."""

    def __init__(
        self,
        matcher: GeofenceMatcher,
        register: HitRegister,
        fences: Sequence[Fence],
    ) -> None:
        self._matcher = matcher
        self._register = register
        self._fences = tuple(fences)
        self.consecutive_failures = 0

    async def run_once(self) -> int:
        """Run one alert tick and return the number of hits written."""
        try:
            hits = await self._matcher.match_fences(self._fences)
        except MatchError as exc:
            self._failed("Fence match failed: %s", exc)
            return 0

        try:
            await self._register.replace_hits(hits)
        except RegisterError as exc:
            self._failed("Hit register %s phase failed: %s", exc.phase, exc)
            return 0

        self.consecutive_failures = 0
        logger.info("Registered %d hits across %d fences", len(hits), len(self._fences))
        return len(hits)

    def _failed(self, msg: str, *args) -> None:
        self.consecutive_failures += 1
        logger.error(
            msg + " (consecutive failures: %d)", *args, self.consecutive_failures
        )
