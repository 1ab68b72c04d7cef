"""Async helpers for running blocking code and background work from async code."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def run_sync(fn: Callable[..., T], *args: object, **kwargs: object) -> T:
    """Run a blocking *fn* in the default executor without stalling the loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))


def spawn(
    coro: Coroutine[Any, Any, T],
    tasks: set[asyncio.Task],
    *,
    name: str | None = None,
) -> asyncio.Task[T]:
    """Schedule *coro* as a tracked task whose failure is logged, not raised.

    The task is held in *tasks* until it finishes so it cannot be garbage
    collected mid-flight.
    """
    task = asyncio.create_task(coro, name=name)
    tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", t.get_name(), exc, exc_info=exc)

    task.add_done_callback(_done)
    return task
