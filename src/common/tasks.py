"""Task fan-out helpers."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Iterable, List, TypeVar

T = TypeVar("T")


async def cancel_all(tasks: Iterable["asyncio.Future"]) -> None:
    """Cancel ``tasks`` and wait until every one of them has finished."""
    pending = [t for t in tasks if not t.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def gather_or_cancel(aws: Iterable[Awaitable[T]]) -> List[T]:
    """Run awaitables concurrently and collect results in input order.

    Unlike ``asyncio.gather``, the first failure cancels every peer that is
    still running before the exception is re-raised.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                await cancel_all(pending)
                raise task.exception()  # type: ignore[misc]
    except asyncio.CancelledError:
        await cancel_all(tasks)
        raise
    return [task.result() for task in tasks]
