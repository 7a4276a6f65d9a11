import asyncio
import logging
from typing import Coroutine, Optional, Set


logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """Runs fire-and-forget side effects after a request's durable write.

    Holds strong references to in-flight tasks until they finish and logs
    any exception they end with.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
