"""Bounded-concurrency runner for asyncio task factories."""

from __future__ import annotations

import asyncio
from collections import deque
from functools import partial
from typing import Any, Awaitable, Callable, Deque, Set, Tuple, TypeVar

import structlog

from assetpub.core.errors import TaskCancelledError

logger = structlog.get_logger()

T = TypeVar("T")

TaskFactory = Callable[[], Awaitable[T]]


class ConcurrencyLimiter:
    """Run at most ``concurrency`` task factories at the same time.

    Factories start in submission order. When a running task settles, the
    next queued factory is started before the submitter is resumed, so a
    ``dispose()`` issued in reaction to a result never races the dispatch
    loop. ``dispose()`` rejects every queued factory that has not started
    yet; started tasks run to completion.
    """

    def __init__(self, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency}")
        self._concurrency = concurrency
        self._queue: Deque[Tuple[TaskFactory[Any], asyncio.Future[Any]]] = deque()
        self._running: Set[asyncio.Task[Any]] = set()
        self._stopped = False

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def active_count(self) -> int:
        return len(self._running)

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    async def submit(self, factory: TaskFactory[T]) -> T:
        if self._stopped:
            raise TaskCancelledError()
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._queue.append((factory, future))
        self._dispatch()
        return await future

    def dispose(self) -> None:
        if not self._stopped:
            logger.debug("limiter_disposed", cancelled=len(self._queue), running=len(self._running))
        self._stopped = True
        while self._queue:
            _, future = self._queue.popleft()
            if not future.done():
                future.set_exception(TaskCancelledError())

    def _dispatch(self) -> None:
        while len(self._running) < self._concurrency and self._queue:
            factory, future = self._queue.popleft()
            if future.done():
                # Submitter went away before the task got a slot
                continue
            task = asyncio.ensure_future(_invoke(factory))
            self._running.add(task)
            task.add_done_callback(partial(self._settle, future))

    def _settle(self, future: asyncio.Future[Any], task: asyncio.Task[Any]) -> None:
        self._running.discard(task)
        self._dispatch()

        if future.done():
            if not task.cancelled():
                task.exception()
            return
        if task.cancelled():
            future.cancel()
        elif task.exception() is not None:
            future.set_exception(task.exception())  # type: ignore[arg-type]
        else:
            future.set_result(task.result())


async def _invoke(factory: TaskFactory[T]) -> T:
    return await factory()
