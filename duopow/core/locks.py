import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, List


class KeyedLocks:
    """One asyncio lock per key, kept only while someone holds or waits on it."""

    def __init__(self) -> None:
        # key -> [lock, holders + waiters]
        self._entries: Dict[Hashable, List] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def busy(self, key: Hashable) -> bool:
        return key in self._entries

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]
