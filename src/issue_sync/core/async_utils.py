"""Thread bridge between the blocking GitHub client and the async engine.

``GitHubClient`` uses ``requests`` and blocks; the fetcher and the push step
await its calls through ``asyncio.to_thread``.  API calls go through
``run_sync_limited`` so that at most ``max_parallel_requests`` are in
flight at once.  Local blocking work (the editor, git) uses ``run_sync``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Request slots for the running command; None means unbounded.
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 4) -> None:
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.debug("At most %d concurrent GitHub requests", max_parallel)


def reset_semaphore() -> None:
    global _semaphore
    _semaphore = None


@asynccontextmanager
async def request_limit(max_parallel: int) -> AsyncIterator[None]:
    """Bound GitHub requests for the duration of one command."""
    init_semaphore(max_parallel)
    try:
        yield
    finally:
        reset_semaphore()


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run blocking local work in a worker thread, without a request slot."""
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run one blocking GitHub call in a worker thread.

    Waits for a free request slot when a limit is active.

    Example:
        issue = await run_sync_limited(client.fetch_issue, "octo", "tools", 42)
    """
    semaphore = _semaphore
    if semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


async def gather_limited(awaitables: Iterable[Awaitable[T]]) -> list[T]:
    """Await *awaitables* concurrently and return results in input order.

    Every request is allowed to finish before the first failure is
    re-raised, so nothing keeps running after the caller gives up.
    """
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)
