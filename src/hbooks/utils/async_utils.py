"""Async helpers for blocking I/O and fire-and-forget background work.

This module provides:
- a thread-pool bridge (`run_blocking`) for file-backed document I/O, and
- `BackgroundTasks`, the owner of best-effort remote writes and reloads that
  callers schedule without awaiting.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
from collections.abc import Coroutine
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from functools import partial
from typing import Any, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

_IO_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="hbooks-io")


@atexit.register
def _shutdown_io_executor() -> None:
    _IO_EXECUTOR.shutdown(wait=False, cancel_futures=True)


async def run_blocking(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run blocking callable on dedicated IO executor and await its result."""
    if not callable(func):
        raise TypeError("func must be callable")
    loop = asyncio.get_running_loop()
    if kwargs:
        bound = partial(func, *args, **kwargs)
        future = loop.run_in_executor(_IO_EXECUTOR, bound)
    else:
        future = loop.run_in_executor(_IO_EXECUTOR, func, *args)
    # Some environments can miss thread->loop wakeups for executor completion.
    # Polling with a short timeout keeps completion deterministic.
    while True:
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=0.1)
        except asyncio.TimeoutError:
            continue


class BackgroundTasks:
    """Keeps references to scheduled tasks and logs their unexpected failures.

    Tasks are not ordered relative to each other; whichever write completes
    last is the one the remote side keeps.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def spawn(
        self, coro: Coroutine[Any, Any, None], *, description: str
    ) -> asyncio.Task[None] | None:
        """Schedule `coro` on the running loop.

        Without a running loop the work is dropped and logged; returns `None`.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(
                "No running event loop; dropped background task: %s", description
            )
            return None
        task = loop.create_task(self._guard(coro, description), name=description)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every task scheduled so far (and any they schedule) ends."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, None], description: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Background task failed: %s", description)
