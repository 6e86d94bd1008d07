"""Cursor-driven fetch over the feed client.

The fetcher is stateless: the caller passes the current cursor in and gets
the next one back, so the cursor has exactly one owner (the ingest job).
"""

from __future__ import annotations

import logging
from typing import Protocol

from nextbus_geofence.models import FeedSnapshot

logger = logging.getLogger(__name__)


class RawFeed(Protocol):
    """Anything that can return the feed's updates since a cursor."""

    async def fetch_raw(self, cursor: int) -> FeedSnapshot:
        ...


class CursorFetcher:
    """One feed request per call, bounded below by the cursor."""

    def __init__(self, feed: RawFeed) -> None:
        self._feed = feed

    async def fetch(self, cursor: int) -> tuple[list[dict[str, str]], int]:
        """Return ``(raw_batch, new_cursor)`` for a request at *cursor*.

        ``new_cursor`` is the feed's reported ``lastTime`` and never less
        than *cursor*.  :class:`~nextbus_geofence.exceptions.FetchError`
        propagates unchanged so the caller keeps its old cursor.
        """
        snapshot = await self._feed.fetch_raw(cursor)

        new_cursor = snapshot.last_time_millis
        if new_cursor < cursor:
            logger.warning(
                "Feed lastTime went backwards (%d < %d); keeping cursor",
                new_cursor,
                cursor,
            )
            new_cursor = cursor

        logger.debug(
            "Fetched %d vehicles, cursor %d → %d",
            len(snapshot.vehicles),
            cursor,
            new_cursor,
        )
        return snapshot.vehicles, new_cursor
