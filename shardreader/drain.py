"""
Shutdown coordination for a ShardReader.

A reader moves through `RUNNING -> DRAINING -> ENDED`. Closing never aborts a service call
which is already in flight: the controller stops new calls from being issued, waits for the
`PendingCounter` to reach zero and for the pump task to stop, and only then ends the stream.
"""

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from .gate import BackpressureGate

logger = logging.getLogger(__name__)


class ReaderState(str, Enum):
    """Lifecycle states of a reader."""

    RUNNING = "running"
    DRAINING = "draining"
    ENDED = "ended"


class PendingCounter:
    """Counts the service calls which have been issued but have not completed yet."""

    def __init__(self) -> None:
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        """Return the number of calls in flight."""
        return self._count

    def increment(self) -> None:
        """Record that a call is about to be issued."""
        self._count += 1
        self._idle.clear()

    def decrement(self) -> None:
        """Record that a call completed, successfully or not."""
        if self._count == 0:
            raise RuntimeError("pending counter cannot go below zero")
        self._count -= 1
        if self._count == 0:
            self._idle.set()

    @contextmanager
    def track(self) -> Iterator[None]:
        """Count the service call made inside the block."""
        self.increment()
        try:
            yield
        finally:
            self.decrement()

    async def wait_idle(self) -> None:
        """Wait until no call is in flight."""
        await self._idle.wait()


class DrainController:
    """Owns the reader state and decides when the stream may end."""

    def __init__(self, pending: PendingCounter, gate: BackpressureGate) -> None:
        """Initialize the controller in the RUNNING state."""
        self._pending = pending
        self._gate = gate
        self._state = ReaderState.RUNNING
        self._stop = asyncio.Event()
        self._closing: asyncio.Future[None] | None = None
        self._pump_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ReaderState:
        """Return the current state."""
        return self._state

    @property
    def stopping(self) -> bool:
        """Whether new service calls are forbidden."""
        return self._state is not ReaderState.RUNNING

    def watch(self, pump_task: "asyncio.Task[None]") -> None:
        """Register the task driving the pump, which must finish before the stream ends."""
        self._pump_task = pump_task

    async def wait_for_stop(self, timeout: float) -> bool:
        """
        Wait up to `timeout` seconds for a close request.

        :return: True if the reader is stopping, False if the timeout elapsed first.
        """
        if self.stopping:
            return True
        try:
            await asyncio.wait_for(self._stop.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def end(self, error: BaseException | None = None) -> None:
        """
        End the stream straight away, keeping any buffered batches ahead of the terminal
        signal unless a close is in progress. Used when the shard is closed and fully read, or
        when the pump failed.
        """
        if self._state is ReaderState.ENDED:
            return
        if error is None:
            logger.info("Shard fully read, ending stream")
        # a close in progress has already promised that nothing more is delivered
        self._finish(error=error, discard=self._state is ReaderState.DRAINING)

    async def close(self) -> None:
        """
        Request a graceful shutdown and wait until it has completed.

        Calling close again while draining waits on the same completion; calling it once the
        reader has ended returns immediately.
        """
        if self._state is ReaderState.ENDED:
            return
        if self._closing is None:
            logger.info("Close requested, draining (%d calls pending)", self._pending.count)
            self._state = ReaderState.DRAINING
            self._stop.set()
            self._gate.interrupt()
            self._closing = asyncio.ensure_future(self._drain())
        await asyncio.shield(self._closing)

    async def _drain(self) -> None:
        await self._pending.wait_idle()
        if self._pump_task is not None:
            await asyncio.wait([self._pump_task])
        # a batch handed over during the drain must have its checkpoint emitted first
        while self._gate.in_delivery:
            await self._gate.wait_delivered()
        if self._state is ReaderState.ENDED:
            return
        self._finish(error=None, discard=True)

    def _finish(self, error: BaseException | None, discard: bool) -> None:
        self._state = ReaderState.ENDED
        self._stop.set()
        discarded = self._gate.finish(error, discard=discard)
        if discarded:
            logger.debug("Discarded %d undelivered batches on close", discarded)
