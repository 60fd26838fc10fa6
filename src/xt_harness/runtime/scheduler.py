"""Cooperative task scheduler backing every concurrent operation in the runner.

Tasks are coroutines multiplexed on a single event loop. Blocking calls go
through `Scheduler.unblock` onto a fixed pool of worker threads, so they do
not stall the cooperative tasks. The pool lives until `shutdown()` and
survives across `run()` calls.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Coroutine, Generator, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WORKERS = 4


class TaskHandle(Generic[T]):
    """Awaitable, cancelable handle for a spawned task."""

    def __init__(self, task: "asyncio.Task[T]") -> None:
        self._task = task

    @property
    def name(self) -> str:
        return self._task.get_name()

    def done(self) -> bool:
        return self._task.done()

    def __await__(self) -> Generator[Any, None, T]:
        return self._task.__await__()

    async def cancel(self) -> Optional[T]:
        """Cancel the task and wait until it has stopped running.

        Returns the task's result if it had already finished, `None` if it
        was cancelled. If the task had failed, its exception is raised.
        """

        if not self._task.done():
            self._task.cancel()
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                # We were cancelled ourselves while waiting.
                raise
            return None


def _log_unretrieved(task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("task %s finished with %r", task.get_name(), exc)


class _SharedPool(ThreadPoolExecutor):
    """Worker pool lent to each `run()` loop as its default executor.

    Event loops shut their default executor down when they close; this pool
    ignores that and only stops in `close()`.
    """

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        return None

    def close(self) -> None:
        super().shutdown(wait=False, cancel_futures=True)


class Scheduler:
    """Fixed-size task pool with spawn/await/cancel primitives.

    Construct one per process run and pass it to whatever needs to run
    work concurrently.
    """

    def __init__(self, *, workers: int = DEFAULT_WORKERS) -> None:
        if workers < 1:
            raise ValueError("scheduler needs at least one worker")
        self._workers = int(workers)
        self._executor: Optional[_SharedPool] = None

    @property
    def workers(self) -> int:
        return self._workers

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = _SharedPool(
                max_workers=self._workers, thread_name_prefix="xt-harness"
            )
        return self._executor

    def spawn(
        self, coro: Coroutine[Any, Any, T], *, name: Optional[str] = None
    ) -> TaskHandle[T]:
        """Schedule `coro` on the running loop and return immediately."""

        task = asyncio.get_running_loop().create_task(coro, name=name)
        task.add_done_callback(_log_unretrieved)
        return TaskHandle(task)

    async def unblock(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking callable on the worker pool."""

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool(), fn, *args)

    def run(self, main: Awaitable[T]) -> T:
        """Drive `main` to completion from blocking code."""

        async def _entry() -> T:
            asyncio.get_running_loop().set_default_executor(self._pool())
            return await main

        return asyncio.run(_entry())

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.close()
            self._executor = None
