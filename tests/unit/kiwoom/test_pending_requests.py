import asyncio

import pytest

from core.utils.exceptions import ConnectionClosedError, RequestTimeoutError
from services.kiwoom.pending_requests import PendingRequestRegistry


@pytest.mark.asyncio
async def test_waiters_resolve_fifo_per_key():
    registry = PendingRequestRegistry()
    first = registry.register("CNSRLST", timeout=5)
    second = registry.register("CNSRLST", timeout=5)

    assert registry.resolve("CNSRLST", {"n": 1})
    assert registry.resolve("CNSRLST", {"n": 2})

    assert await first.future == {"n": 1}
    assert await second.future == {"n": 2}
    assert registry.pending_count() == 0


@pytest.mark.asyncio
async def test_resolve_without_waiter_returns_false():
    registry = PendingRequestRegistry()
    assert registry.resolve("CNSRREQ", {}) is False


@pytest.mark.asyncio
async def test_unanswered_request_times_out_and_is_removed():
    registry = PendingRequestRegistry()
    handle = registry.register("CNSRREQ", timeout=0.01)

    with pytest.raises(RequestTimeoutError):
        await handle.future
    assert registry.pending_count("CNSRREQ") == 0


@pytest.mark.asyncio
async def test_reject_all_fails_every_waiter():
    registry = PendingRequestRegistry()
    handles = [registry.register("CNSRLST", 5), registry.register("CNSRREQ", 5)]

    registry.reject_all(ConnectionClosedError("closed"))

    for handle in handles:
        with pytest.raises(ConnectionClosedError):
            await handle.future
    assert registry.pending_count() == 0


@pytest.mark.asyncio
async def test_discard_cancels_timer():
    registry = PendingRequestRegistry()
    handle = registry.register("CNSRLST", timeout=0.01)
    registry.discard(handle)
    await asyncio.sleep(0.02)
    assert not handle.future.done()
