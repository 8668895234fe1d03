import asyncio
from collections import OrderedDict
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import wraps

from aiojobs import Scheduler


@asynccontextmanager
async def get_scheduler(limit: int | None = None) -> AsyncGenerator[Scheduler]:
    """
    Scheduler of background jobs, at most `limit` running at once.

    Jobs still running on exit get 45 secs to finish before being cancelled.
    """
    async with Scheduler(
        close_timeout=45,
        limit=limit,
        pending_limit=0,  # Unbounded queue, callers spawn a known amount of jobs
    ) as scheduler:
        yield scheduler


def lru_acache(maxsize: int = 128):
    """
    Memoize an async factory, per event loop and arguments.

    Concurrent first calls share the same pending result, so a client is built once. A failed call is not memoized. Beyond `maxsize` entries, the least recently used is forgotten.
    """

    def decorator(func):
        results: OrderedDict[tuple, asyncio.Task] = OrderedDict()

        @wraps(func)
        async def wrapper(*args, **kwargs):
            # Clients are bound to the loop they were created in
            key = (
                id(asyncio.get_running_loop()),
                args,
                frozenset(kwargs.items()),
            )
            task = results.get(key)
            if task is None:
                task = asyncio.ensure_future(func(*args, **kwargs))
                results[key] = task
                while len(results) > maxsize:
                    results.popitem(last=False)
            else:
                results.move_to_end(key)

            try:
                if task.done():
                    return task.result()
                return await asyncio.shield(task)
            except (Exception, asyncio.CancelledError):
                if results.get(key) is task:
                    del results[key]
                raise

        return wrapper

    return decorator
