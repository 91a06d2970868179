import asyncio

import pytest
from shardreader import ReaderState
from shardreader.drain import DrainController, PendingCounter
from shardreader.gate import BackpressureGate


@pytest.fixture
def pending() -> PendingCounter:
    return PendingCounter()


@pytest.fixture
def gate() -> BackpressureGate:
    return BackpressureGate(max_buffered=1)


@pytest.fixture
def drain(pending: PendingCounter, gate: BackpressureGate) -> DrainController:
    return DrainController(pending, gate)


def test_pending_counter_cannot_go_negative(pending: PendingCounter) -> None:
    """Test that decrementing an idle counter is an error."""
    with pytest.raises(RuntimeError, match="below zero"):
        pending.decrement()


def test_pending_counter_tracks_failed_calls(pending: PendingCounter) -> None:
    """Test that a failing call inside track is still counted down."""
    with pytest.raises(ValueError):
        with pending.track():
            assert pending.count == 1
            raise ValueError("call failed")
    assert pending.count == 0


async def test_wait_idle_waits_for_last_call(pending: PendingCounter) -> None:
    """Test that wait_idle returns only once every call completed."""
    # arrange
    pending.increment()
    pending.increment()
    idle = asyncio.create_task(pending.wait_idle())

    # act
    pending.decrement()
    await asyncio.sleep(0.01)
    assert not idle.done()
    pending.decrement()

    # assert
    await asyncio.wait_for(idle, timeout=1)


async def test_close_waits_for_pending_calls(
    drain: DrainController, pending: PendingCounter
) -> None:
    """Test that close stays in DRAINING while a call is in flight."""
    # arrange
    pending.increment()

    # act
    close = asyncio.create_task(drain.close())
    await asyncio.sleep(0.01)

    # assert
    assert drain.state is ReaderState.DRAINING
    assert drain.stopping
    assert not close.done()

    pending.decrement()
    await asyncio.wait_for(close, timeout=1)
    assert drain.state is ReaderState.ENDED


async def test_close_waits_for_pump_task(drain: DrainController) -> None:
    """Test that close waits until the pump has stopped scheduling work."""
    # arrange
    release = asyncio.Event()
    pump = asyncio.create_task(release.wait())
    drain.watch(pump)

    # act
    close = asyncio.create_task(drain.close())
    await asyncio.sleep(0.01)
    assert not close.done()
    release.set()

    # assert
    await asyncio.wait_for(close, timeout=1)
    assert drain.state is ReaderState.ENDED


async def test_close_after_end_returns_immediately(
    drain: DrainController, pending: PendingCounter, gate: BackpressureGate
) -> None:
    """Test that close is a no-op once the reader ended with an error."""
    # arrange
    drain.end(RuntimeError("failed"))
    pending.increment()

    # act
    await asyncio.wait_for(drain.close(), timeout=1)

    # assert
    assert drain.state is ReaderState.ENDED
    assert gate.finished


async def test_repeated_close_attaches_to_same_drain(
    drain: DrainController, pending: PendingCounter
) -> None:
    """Test that every close call completes together with the first one."""
    # arrange
    pending.increment()
    first = asyncio.create_task(drain.close())
    second = asyncio.create_task(drain.close())
    await asyncio.sleep(0.01)
    assert not first.done() and not second.done()

    # act
    pending.decrement()

    # assert
    await asyncio.wait_for(asyncio.gather(first, second), timeout=1)


async def test_cancelling_a_close_does_not_abort_draining(
    drain: DrainController, pending: PendingCounter
) -> None:
    """Test that a cancelled close caller leaves the drain running."""
    # arrange
    pending.increment()
    close = asyncio.create_task(drain.close())
    await asyncio.sleep(0.01)

    # act
    close.cancel()
    pending.decrement()
    await asyncio.wait_for(drain.close(), timeout=1)

    # assert
    assert drain.state is ReaderState.ENDED


async def test_wait_for_stop_times_out_while_running(drain: DrainController) -> None:
    """Test that the retry wait elapses normally while running."""
    assert await drain.wait_for_stop(0.01) is False


async def test_wait_for_stop_is_interrupted_by_close(drain: DrainController) -> None:
    """Test that a close request cuts the retry wait short."""
    # arrange
    wait = asyncio.create_task(drain.wait_for_stop(10))
    await asyncio.sleep(0)

    # act
    await drain.close()

    # assert
    assert await asyncio.wait_for(wait, timeout=1) is True
