"""Supervision for fire-and-forget work such as push fan-out.

Tasks started with ``spawn`` stay referenced until they finish, and a failure
is logged under the task's label instead of disappearing with the task.
Blocking SDK calls (the push gateway client) go through ``run_sync``.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

_inflight: Set[asyncio.Task[Any]] = set()


def _report(task: asyncio.Task[Any], *, label: str,
            on_error: Optional[Callable[[BaseException], None]]) -> None:
    _inflight.discard(task)
    if task.cancelled():
        logger.debug("Background task %s cancelled", label)
        return
    exc = task.exception()
    if exc is None:
        return
    logger.error("Background task %s failed", label, exc_info=exc)
    if on_error is not None:
        try:
            on_error(exc)
        except Exception:  # noqa: BLE001
            logger.exception("on_error callback for %s raised", label)


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None,
          on_error: Optional[Callable[[BaseException], None]] = None) -> asyncio.Task[Any]:
    """Run `coro` on the current loop without awaiting it.

    Args:
        coro: the coroutine to run.
        name: label for log lines, e.g. ``push:alert:42``.
        on_error: called with the exception if the task fails.
    """
    task = asyncio.get_running_loop().create_task(coro, name=name)  # type: ignore[arg-type]
    _inflight.add(task)
    task.add_done_callback(partial(_report, label=name or task.get_name(), on_error=on_error))
    return task


async def run_sync(func: Callable[..., Any], *args: Any, executor: Optional[Executor] = None,
                   **kwargs: Any) -> Any:
    """Await a blocking call on an executor thread."""
    return await asyncio.get_running_loop().run_in_executor(executor, partial(func, *args, **kwargs))


async def drain(timeout: Optional[float] = None) -> int:
    """Wait for in-flight tasks; anything still running after `timeout` is cancelled.

    Returns the number of tasks that had to be cancelled.
    """
    pending = [t for t in _inflight if not t.done()]
    if not pending:
        return 0
    _, unfinished = await asyncio.wait(pending, timeout=timeout)
    for task in unfinished:
        task.cancel()
    if unfinished:
        logger.warning("Cancelled %s background tasks still running after %ss", len(unfinished), timeout)
    return len(unfinished)


__all__ = ["spawn", "run_sync", "drain"]
