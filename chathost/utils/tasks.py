"""
Async helpers.

- BackgroundTasks: fire-and-forget work whose failures are logged and
  reported, never dropped
- KeyedLocks: one asyncio.Lock per key, released when unused
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Coroutine

from loguru import logger


ErrorCallback = Callable[[str, BaseException], Awaitable[None] | None]


class BackgroundTasks:
    """Tracks background tasks so they can be drained and their errors surfaced."""

    def __init__(self, on_error: ErrorCallback | None = None):
        self._tasks: set[asyncio.Task] = set()
        self._on_error = on_error
        self._started = 0
        self._failed = 0

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Schedule a coroutine; must be called with a running loop."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        self._started += 1
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return

        self._failed += 1
        logger.opt(exception=error).error(f"Background task {task.get_name()} failed: {error}")
        if self._on_error is None:
            return
        try:
            result = self._on_error(task.get_name(), error)
            if asyncio.iscoroutine(result):
                self.spawn(result, f"{task.get_name()}:on_error")
        except Exception as callback_error:
            logger.error(f"Background error callback failed: {callback_error}")

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until every tracked task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            pending = list(self._tasks)
            done, _ = await asyncio.wait(pending, timeout=timeout)
            if timeout is not None and len(done) < len(pending):
                logger.warning(f"{len(pending) - len(done)} background tasks still running after {timeout}s")
                return
            # Let done callbacks run before checking again
            await asyncio.sleep(0)

    async def cancel_all(self) -> None:
        """Cancel every tracked task and wait for the cancellations to land."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def get_stats(self) -> dict[str, Any]:
        return {
            "pending": len(self._tasks),
            "started": self._started,
            "failed": self._failed,
        }


class KeyedLocks:
    """Per-key asyncio locks."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
