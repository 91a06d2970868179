"""Bounded hand-over of record batches from the pump to the consumer."""

import asyncio
import logging
from collections import deque

from .record import RecordBatch

logger = logging.getLogger(__name__)


class BackpressureGate:
    """
    Holds at most `max_buffered` ready batches between the pump and a single consumer.

    Pumping is demand driven: there is demand once the consumer has pulled at least once and
    the buffer has room. The pump waits for demand before every fetch, so with one fetch in
    flight the buffer can never grow past its bound.

    A batch is "in delivery" from the moment the consumer takes it until the reader calls
    `end_delivery`, i.e. once its checkpoint has been emitted.

    Once interrupted, buffered batches are no longer handed out: `take` only receives a batch
    offered directly while it waits, or the terminal signal.
    """

    def __init__(self, max_buffered: int) -> None:
        """Initialize an empty gate with the given buffer bound."""
        if max_buffered < 1:
            raise ValueError("max_buffered must be >= 1")
        self._max_buffered = max_buffered
        self._buffer: deque[RecordBatch] = deque()
        self._waiter: asyncio.Future[RecordBatch | None] | None = None
        self._demand = asyncio.Event()
        self._delivered = asyncio.Event()
        self._delivered.set()
        self._in_delivery = 0
        self._started = False
        self._interrupted = False
        self._finished = False
        self._error: BaseException | None = None

    @property
    def buffered(self) -> int:
        """Return the number of batches waiting to be taken."""
        return len(self._buffer)

    @property
    def in_delivery(self) -> int:
        """Return the number of batches taken but not yet acknowledged."""
        return self._in_delivery

    @property
    def finished(self) -> bool:
        """Whether a terminal signal has been queued."""
        return self._finished

    def offer(self, batch: RecordBatch) -> None:
        """
        Hand a batch to the waiting consumer, or buffer it if nobody is waiting.

        :raises RuntimeError: if the gate is finished or the buffer is full.
        """
        if self._finished:
            raise RuntimeError("cannot offer a batch to a finished gate")
        if self._waiter is not None and not self._waiter.done():
            self._begin_delivery()
            self._waiter.set_result(batch)
        elif len(self._buffer) >= self._max_buffered:
            raise RuntimeError("backpressure gate is full")
        else:
            self._buffer.append(batch)
        self._update_demand()

    async def take(self) -> RecordBatch | None:
        """
        Take the next batch, waiting for one if necessary.

        :return: the next batch, or None once the stream has ended.
        :raises RuntimeError: if another consumer is already waiting.
        :raises Exception: the error the stream ended with, exactly once.
        """
        if self._waiter is not None:
            raise RuntimeError("another consumer is already waiting on this gate")
        self._started = True

        if self._buffer and not self._interrupted:
            batch = self._buffer.popleft()
            self._begin_delivery()
            self._update_demand()
            return batch
        if self._finished:
            return self._terminal()

        waiter: asyncio.Future[RecordBatch | None] = asyncio.get_running_loop().create_future()
        self._waiter = waiter
        self._update_demand()
        try:
            return await waiter
        except asyncio.CancelledError:
            self._reclaim(waiter)
            raise
        finally:
            self._waiter = None

    def end_delivery(self) -> None:
        """Acknowledge that a taken batch has been fully delivered."""
        if self._in_delivery == 0:
            raise RuntimeError("no batch is being delivered")
        self._in_delivery -= 1
        if self._in_delivery == 0:
            self._delivered.set()

    async def wait_for_demand(self) -> None:
        """Wait until the consumer wants more data, or the gate is interrupted."""
        await self._demand.wait()

    async def wait_delivered(self) -> None:
        """Wait until every taken batch has been acknowledged."""
        await self._delivered.wait()

    def interrupt(self) -> None:
        """Stop handing out buffered batches and wake up the pump to observe a close request."""
        self._interrupted = True
        self._demand.set()

    def finish(self, error: BaseException | None = None, *, discard: bool = False) -> int:
        """
        Queue the terminal signal: end-of-stream, or `error` if given.

        :param error: the error to raise to the consumer once buffered batches are taken
        :param discard: drop batches which were never taken
        :return: the number of batches discarded
        """
        if self._finished:
            return 0
        self._finished = True
        discarded = 0
        if discard:
            discarded = len(self._buffer)
            self._buffer.clear()
        self._error = error
        if self._waiter is not None and not self._waiter.done():
            if self._error is not None:
                self._waiter.set_exception(self._error)
                self._error = None
            else:
                self._waiter.set_result(None)
        self._demand.set()
        return discarded

    def _terminal(self) -> None:
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    def _begin_delivery(self) -> None:
        self._in_delivery += 1
        self._delivered.clear()

    def _reclaim(self, waiter: "asyncio.Future[RecordBatch | None]") -> None:
        # the consumer was cancelled after the waiter was resolved: put the result back
        if not waiter.done() or waiter.cancelled():
            return
        error = waiter.exception()
        if error is not None:
            self._error = error
            return
        batch = waiter.result()
        if batch is not None:
            logger.debug("Consumer cancelled during hand-over, re-buffering batch")
            self._buffer.appendleft(batch)
            self.end_delivery()
            self._update_demand()

    def _update_demand(self) -> None:
        if self._interrupted or self._finished:
            self._demand.set()
        elif self._started and len(self._buffer) < self._max_buffered:
            self._demand.set()
        else:
            self._demand.clear()
