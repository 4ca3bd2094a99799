"""
Tests for the thread bridge used by the fetcher and the push step.

Covers the request slots, the worker-thread calls and gather_limited.
"""

import threading
import time

import pytest

import issue_sync.core.async_utils as async_utils
from issue_sync.core.async_utils import (
    gather_limited,
    init_semaphore,
    request_limit,
    reset_semaphore,
    run_sync,
    run_sync_limited,
)


def _fetch_title(number: int, prefix: str = "Issue") -> str:
    return f"{prefix} #{number}"


async def test_run_sync_forwards_arguments():
    assert await run_sync(_fetch_title, 7, prefix="Bug") == "Bug #7"


async def test_run_sync_runs_off_the_event_loop_thread():
    loop_thread = threading.get_ident()
    worker_thread = await run_sync(threading.get_ident)
    assert worker_thread != loop_thread


async def test_init_and_reset_semaphore():
    init_semaphore(3)
    assert async_utils._semaphore is not None
    assert async_utils._semaphore._value == 3
    reset_semaphore()
    assert async_utils._semaphore is None


async def test_run_sync_limited_without_semaphore():
    reset_semaphore()
    assert await run_sync_limited(_fetch_title, 1) == "Issue #1"


async def test_gather_limited_keeps_order():
    init_semaphore(2)
    results = await gather_limited(
        [run_sync_limited(_fetch_title, n) for n in (3, 1, 2)]
    )
    assert results == ["Issue #3", "Issue #1", "Issue #2"]


async def test_gather_limited_empty():
    assert await gather_limited([]) == []


async def test_run_sync_limited_bounds_concurrency():
    """No more requests run at once than the semaphore allows."""
    init_semaphore(2)
    lock = threading.Lock()
    running = 0
    peak = 0

    def _request(number):
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.05)
        with lock:
            running -= 1
        return number

    results = await gather_limited(
        [run_sync_limited(_request, n) for n in range(6)]
    )
    assert results == list(range(6))
    assert peak <= 2


async def test_request_limit_scopes_the_semaphore():
    async with request_limit(5):
        assert async_utils._semaphore._value == 5
    assert async_utils._semaphore is None


async def test_request_limit_released_on_error():
    with pytest.raises(RuntimeError):
        async with request_limit(2):
            raise RuntimeError("boom")
    assert async_utils._semaphore is None


async def test_gather_limited_waits_for_all_before_raising():
    finished = []

    def _missing():
        raise LookupError("no such issue")

    def _slow():
        time.sleep(0.05)
        finished.append("comments")
        return []

    with pytest.raises(LookupError, match="no such issue"):
        await gather_limited([run_sync_limited(_missing), run_sync_limited(_slow)])
    assert finished == ["comments"]
