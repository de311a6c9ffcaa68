"""
Unit tests for RequestCorrelator.
"""
import asyncio

import pytest

from mcp_hub.mcp_client.correlator import RequestCorrelator
from mcp_hub.mcp_client.exceptions import MCPTimeoutError, MCPTransportClosedError

CLOCK_SLACK = 0.005


@pytest.mark.asyncio
async def test_resolve_settles_once():
    correlator = RequestCorrelator(timeout_seconds=5)
    future = correlator.register(1)

    assert correlator.resolve(1, {"id": 1, "result": "first"}) is True
    assert correlator.resolve(1, {"id": 1, "result": "second"}) is False
    assert correlator.reject(1, RuntimeError("late")) is False

    assert await future == {"id": 1, "result": "first"}
    assert len(correlator) == 0


@pytest.mark.asyncio
async def test_unknown_id_is_dropped():
    correlator = RequestCorrelator()
    assert correlator.resolve("missing", {}) is False


@pytest.mark.asyncio
async def test_timeout_rejects_and_removes_entry():
    loop = asyncio.get_running_loop()
    correlator = RequestCorrelator(timeout_seconds=0.2)
    started = loop.time()
    future = correlator.register(7)

    with pytest.raises(MCPTimeoutError, match="Request 7 timed out after 0.2s"):
        await future
    elapsed = loop.time() - started
    # The loop may run a timer up to one clock tick early.
    assert 0.2 - CLOCK_SLACK <= elapsed < 1.0
    assert 7 not in correlator
    # A reply arriving after the timeout changes nothing.
    assert correlator.resolve(7, {"id": 7, "result": {}}) is False


@pytest.mark.asyncio
async def test_per_request_timeout_overrides_default():
    correlator = RequestCorrelator(timeout_seconds=60)
    future = correlator.register("slow", timeout_seconds=0.01)
    with pytest.raises(MCPTimeoutError):
        await asyncio.wait_for(future, timeout=1)


@pytest.mark.asyncio
async def test_resolve_cancels_timer():
    correlator = RequestCorrelator(timeout_seconds=0.02)
    future = correlator.register(1)
    correlator.resolve(1, {"id": 1, "result": True})
    await asyncio.sleep(0.05)
    assert future.result() == {"id": 1, "result": True}


@pytest.mark.asyncio
async def test_reject_all():
    correlator = RequestCorrelator()
    futures = [correlator.register(i) for i in range(3)]

    assert correlator.reject_all(MCPTransportClosedError("Transport closed")) == 3
    assert correlator.pending_ids() == []
    for future in futures:
        with pytest.raises(MCPTransportClosedError):
            await future
    assert correlator.reject_all(MCPTransportClosedError()) == 0


@pytest.mark.asyncio
async def test_duplicate_id_is_rejected():
    correlator = RequestCorrelator()
    correlator.register(1)
    with pytest.raises(ValueError, match="already pending"):
        correlator.register(1)
    correlator.reject_all(MCPTransportClosedError())


@pytest.mark.asyncio
async def test_cancelled_waiter_is_forgotten():
    correlator = RequestCorrelator()
    future = correlator.register(3)
    future.cancel()
    await asyncio.sleep(0)
    assert 3 not in correlator
    assert correlator.resolve(3, {"id": 3, "result": {}}) is False
