"""Cooperative cancellation shared by provider calls, SSE reads and the tool loop."""

import asyncio
import contextlib
from collections.abc import Awaitable
from typing import TypeVar

from smarthopper.errors import CallCancelledError

T = TypeVar("T")


def is_cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


async def run_cancellable(
    awaitable: Awaitable[T],
    cancel: asyncio.Event | None,
    *,
    timeout: float | None = None,
) -> T:
    """Await ``awaitable`` until it finishes, ``cancel`` fires or ``timeout`` expires.

    Raises ``CallCancelledError`` on cancellation and ``TimeoutError`` on timeout;
    in both cases the pending work is cancelled and awaited before returning.
    """
    if cancel is None:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CallCancelledError("Operation cancelled")

    work = asyncio.ensure_future(awaitable)
    stop = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait(
            {work, stop}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        stop.cancel()
    if work in done:
        return work.result()

    work.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await work
    if cancel.is_set():
        raise CallCancelledError("Operation cancelled")
    raise TimeoutError(f"Operation timed out after {timeout} seconds")
