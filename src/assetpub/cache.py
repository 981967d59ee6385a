from __future__ import annotations

import asyncio
from functools import partial
from typing import Awaitable, Callable, Dict, Generic, Hashable, TypeVar

import structlog

logger = structlog.get_logger()

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class AsyncMemo(Generic[K, V]):
    """Memoize async computations per key.

    The first caller for a key starts the computation; callers arriving while
    it is in flight await the same future instead of starting a duplicate.
    Failed computations are evicted so a later call retries.
    """

    def __init__(self, name: str = "memo") -> None:
        self._name = name
        self._entries: Dict[K, asyncio.Future[V]] = {}

    async def get_or_compute(self, key: K, factory: Callable[[], Awaitable[V]]) -> V:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("memo_miss", memo=self._name, key=str(key))
            entry = asyncio.ensure_future(factory())
            self._entries[key] = entry
            entry.add_done_callback(partial(self._evict_failure, key))
        # Shielded so a cancelled waiter does not cancel the shared computation
        return await asyncio.shield(entry)

    def _evict_failure(self, key: K, entry: asyncio.Future[V]) -> None:
        if entry.cancelled() or entry.exception() is not None:
            if self._entries.get(key) is entry:
                del self._entries[key]

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
