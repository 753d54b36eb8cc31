"""Per-record asyncio locks."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List


class KeyedLocks:
    """
    One asyncio.Lock per key, created on first use.

    An entry is dropped as soon as no coroutine holds or waits on it, so the
    map only ever contains keys with work in flight.
    """

    def __init__(self) -> None:
        # key -> [lock, holders + waiters]
        self._entries: Dict[str, List] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]
