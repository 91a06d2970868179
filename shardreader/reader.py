"""Module containing the consumer-facing reader for a single shard."""

import asyncio
import logging
from types import TracebackType
from typing import TYPE_CHECKING

from .acquirer import IteratorAcquirer
from .checkpoint import CheckpointEmitter, CheckpointReceiver
from .constants import DEFAULT_EMPTY_RETRY_WAIT, DEFAULT_MAX_BUFFERED_BATCHES
from .cursor import ShardCursor
from .drain import DrainController, PendingCounter, ReaderState
from .errors import InvalidConfiguration
from .gate import BackpressureGate
from .position import StreamPosition
from .pump import RecordPump, clamp_limit
from .record import RecordBatch
from .resolver import ShardResolver
from .service import StreamService

if TYPE_CHECKING:
    from .settings import ReaderSettings

logger = logging.getLogger(__name__)


class ShardReader:
    """
    Reads one shard of a stream as a sequence of record batches.

    Batches are pulled with `read()` or `async for`. Nothing is fetched until the first pull,
    and at most `max_buffered_batches` batches are fetched ahead of the consumer. The
    checkpoint of every batch is emitted to the subscribed receivers as the batch is
    delivered. A failure ends the stream: the error is raised once from `read()`, which
    returns None from then on.

    After the first pull a background task polls the shard until the stream ends. A reader
    which is still running must be closed with `close()` or used with `async with`,
    otherwise that task stays pending.

    Example:
        async with ShardReader(service, "orders", limit=100) as reader:
            async for batch in reader:
                for record in batch:
                    handle(record.data)
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        service: StreamService,
        stream_name: str,
        *,
        shard_id: str | None = None,
        position: StreamPosition | None = None,
        limit: int | None = None,
        empty_retry_wait: float = DEFAULT_EMPTY_RETRY_WAIT,
        max_buffered_batches: int = DEFAULT_MAX_BUFFERED_BATCHES,
        checkpoint_receiver: CheckpointReceiver | None = None,
    ) -> None:
        """
        Initializes a new instance of the ShardReader class.

        :param service: The stream service to read from. It is shared, not owned: closing the
            reader does not close it.
        :param stream_name: The name of the stream.
        :param shard_id: The shard to read; the first shard of the stream if not given.
        :param position: Where to start; the first sequence number of the shard if not given.
        :param limit: The maximum number of records per batch, 1 if not given.
        :param empty_retry_wait: Seconds to wait after a fetch returned no records.
        :param max_buffered_batches: How many batches may be fetched ahead of the consumer.
        :param checkpoint_receiver: An optional receiver for the checkpoint of every batch.
        :raises InvalidConfiguration: if any parameter is invalid.
        """
        if not stream_name:
            raise InvalidConfiguration("stream name is required")
        if shard_id is not None and not shard_id:
            raise InvalidConfiguration("shard id must not be empty")
        if position is not None and not isinstance(position, StreamPosition):
            msg = f"position must be a StreamPosition, got {position!r}"
            raise InvalidConfiguration(msg)
        if empty_retry_wait < 0:
            raise InvalidConfiguration("empty_retry_wait must not be negative")
        if max_buffered_batches < 1:
            raise InvalidConfiguration("max_buffered_batches must be at least 1")

        self.stream_name = stream_name
        self._cursor = ShardCursor(stream_name, shard_id)
        self._pending = PendingCounter()
        self._gate = BackpressureGate(max_buffered_batches)
        self._drain = DrainController(self._pending, self._gate)
        self._checkpoints = CheckpointEmitter()
        if checkpoint_receiver is not None:
            self._checkpoints.subscribe(checkpoint_receiver)
        self._pump = RecordPump(
            service,
            self._cursor,
            resolver=ShardResolver(service, self._pending),
            acquirer=IteratorAcquirer(service, self._pending, position),
            pending=self._pending,
            drain=self._drain,
            limit=clamp_limit(limit),
            empty_retry_wait=empty_retry_wait,
        )
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        service: StreamService,
        settings: "ReaderSettings",
        checkpoint_receiver: CheckpointReceiver | None = None,
    ) -> "ShardReader":
        """Create a reader configured from the given settings."""
        return cls(
            service,
            settings.stream_name,
            shard_id=settings.shard_id,
            position=settings.to_position(),
            limit=settings.limit,
            empty_retry_wait=settings.empty_retry_wait,
            max_buffered_batches=settings.max_buffered_batches,
            checkpoint_receiver=checkpoint_receiver,
        )

    @property
    def state(self) -> ReaderState:
        """Return the lifecycle state of the reader."""
        return self._drain.state

    @property
    def shard_id(self) -> str | None:
        """Return the shard being read, None until it is resolved."""
        return self._cursor.shard_id

    @property
    def limit(self) -> int:
        """Return the number of records requested per fetch."""
        return self._pump.limit

    @property
    def pending(self) -> int:
        """Return the number of service calls in flight."""
        return self._pending.count

    @property
    def buffered(self) -> int:
        """Return the number of batches fetched but not yet read."""
        return self._gate.buffered

    @property
    def checkpoints(self) -> CheckpointEmitter:
        """Return the emitter to subscribe checkpoint receivers to."""
        return self._checkpoints

    async def read(self) -> RecordBatch | None:
        """
        Return the next batch, waiting for one if necessary.

        :return: the next batch, or None once the stream has ended.
        :raises ShardNotFound: if the requested shard does not exist.
        :raises ServiceError: if the stream service failed.
        """
        self._ensure_pumping()
        batch = await self._gate.take()
        if batch is None:
            return None
        try:
            await self._checkpoints.emit(batch)
        finally:
            self._gate.end_delivery()
        return batch

    async def close(self) -> None:
        """
        Stop reading and wait until every in-flight call has completed and the stream has
        ended. Batches which were fetched but never read are dropped; their checkpoints were
        never emitted, so resuming from the last checkpoint reads them again. The background
        task has finished once close returns.
        """
        await self._drain.close()

    def __aiter__(self) -> "ShardReader":
        return self

    async def __anext__(self) -> RecordBatch:
        batch = await self.read()
        if batch is None:
            raise StopAsyncIteration
        return batch

    async def __aenter__(self) -> "ShardReader":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.close()

    def _ensure_pumping(self) -> None:
        if self._task is not None or self._drain.stopping:
            return
        self._task = asyncio.create_task(self._run(), name=f"shardreader:{self.stream_name}")
        self._drain.watch(self._task)

    async def _run(self) -> None:
        try:
            while not self._drain.stopping:
                await self._gate.wait_for_demand()
                if self._drain.stopping:
                    break
                batch = await self._pump.next_batch()
                if batch is None:
                    if self._pump.exhausted:
                        self._drain.end()
                    break
                self._gate.offer(batch)
        except Exception as error:  # pylint: disable=broad-except
            logger.warning(
                "Reading %s/%s failed: %s", self.stream_name, self._cursor.shard_id, error
            )
            self._drain.end(error)
