"""Bridge from the blocking sync engine to asyncio callers."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Await ``func(*args, **kwargs)`` on a worker thread.

    The event loop keeps running while a sync pass blocks on network and
    disk I/O.  Exceptions raised by *func* propagate to the awaiting
    caller.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
