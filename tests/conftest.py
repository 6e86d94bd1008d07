"""Shared fixtures: an in-memory store that can be told to fail or stall."""

import asyncio

import pytest

from nextbus_geofence.store import MemoryStore


class FlakyStore(MemoryStore):
    """MemoryStore whose operations can be made to raise or hang."""

    def __init__(self) -> None:
        super().__init__()
        self.fail: set[str] = set()
        self.stall: set[str] = set()
        self.calls: list[str] = []

    async def _check(self, op: str) -> None:
        self.calls.append(op)
        if op in self.stall:
            await asyncio.sleep(60)
        if op in self.fail:
            raise ConnectionError(f"{op} unavailable")

    async def bulk_upsert(self, name, docs):
        await self._check("bulk_upsert")
        return await super().bulk_upsert(name, docs)

    async def find_within(self, name, query, limit):
        await self._check("find_within")
        return await super().find_within(name, query, limit)

    async def delete_all(self, name):
        await self._check("delete_all")
        return await super().delete_all(name)


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()
