from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Set

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """
    Runs fire-and-forget side effects (notifications, audit, indexing) as
    asyncio tasks.

    - spawn() returns immediately; the request path never has to await the task
    - at most `max_concurrency` supervised coroutines run at once
    - a task that crashes is logged here and never re-raised
    - drain() is for shutdown: wait up to `timeout`, then cancel the rest
    """

    def __init__(self, max_concurrency: int = 20) -> None:
        self.max_concurrency = max(1, int(max_concurrency))
        self._tasks: Set[asyncio.Task] = set()
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable[Any], *, name: str = "side-effect") -> asyncio.Task:
        task = asyncio.ensure_future(self._run(coro))
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _run(self, coro: Awaitable[Any]) -> Any:
        if self._semaphore is None:
            # created lazily so it binds to the running loop
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
        async with self._semaphore:
            return await coro

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: float = 15.0) -> int:
        """
        Wait for in-flight tasks (including ones they spawn) up to `timeout` seconds.
        Returns how many tasks had to be cancelled.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)

        while self._tasks:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)

        leftover = [t for t in self._tasks if not t.done()]
        for t in leftover:
            t.cancel()
        if leftover:
            await asyncio.gather(*leftover, return_exceptions=True)
            logger.warning("Cancelled %d background task(s) at shutdown", len(leftover))
        return len(leftover)
