"""The polling loop for a single shard."""

import asyncio
import logging

from .acquirer import IteratorAcquirer
from .constants import MAX_RECORDS_PER_FETCH
from .cursor import Shard, ShardCursor
from .drain import DrainController, PendingCounter
from .errors import InvalidConfiguration
from .record import RecordBatch
from .resolver import ShardResolver
from .service import StreamService

logger = logging.getLogger(__name__)


def clamp_limit(limit: int | None) -> int:
    """
    Normalize the number of records requested per fetch.

    None and 0 mean 1; anything above MAX_RECORDS_PER_FETCH is clamped down to it.

    :raises InvalidConfiguration: if the limit is negative or not an integer.
    """
    if limit is None:
        return 1
    if isinstance(limit, bool) or not isinstance(limit, int):
        msg = f"limit must be an integer, got {limit!r}"
        raise InvalidConfiguration(msg)
    if limit < 0:
        msg = f"limit must not be negative, got {limit}"
        raise InvalidConfiguration(msg)
    if limit == 0:
        return 1
    if limit > MAX_RECORDS_PER_FETCH:
        logger.debug("Limit %d clamped to %d", limit, MAX_RECORDS_PER_FETCH)
        return MAX_RECORDS_PER_FETCH
    return limit


class RecordPump:  # pylint: disable=too-many-instance-attributes
    """
    Fetches record batches from one shard, one call at a time.

    The first call to `next_batch` resolves the shard and acquires an iterator. Every call
    then fetches until it has a non-empty batch, waiting `empty_retry_wait` seconds between
    empty fetches. The pump stops for good once the shard is closed and fully read, and stops
    issuing calls as soon as the drain controller is stopping.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        service: StreamService,
        cursor: ShardCursor,
        *,
        resolver: ShardResolver,
        acquirer: IteratorAcquirer,
        pending: PendingCounter,
        drain: DrainController,
        limit: int,
        empty_retry_wait: float,
    ) -> None:
        self._service = service
        self._cursor = cursor
        self._requested_shard_id = cursor.shard_id
        self._resolver = resolver
        self._acquirer = acquirer
        self._pending = pending
        self._drain = drain
        self._limit = limit
        self._empty_retry_wait = empty_retry_wait
        self._shard: Shard | None = None
        self._last_sequence_number: str | None = None
        self._exhausted = False
        self._lock = asyncio.Lock()

    @property
    def shard(self) -> Shard | None:
        """Return the resolved shard, None until resolved."""
        return self._shard

    @property
    def limit(self) -> int:
        """Return the number of records requested per fetch."""
        return self._limit

    @property
    def exhausted(self) -> bool:
        """Whether the shard is closed and every record has been fetched."""
        return self._exhausted

    @property
    def last_sequence_number(self) -> str | None:
        """Return the sequence number of the last record fetched."""
        return self._last_sequence_number

    async def next_batch(self) -> RecordBatch | None:
        """
        Fetch the next non-empty batch.

        :return: the batch, or None if the shard is exhausted or the reader is stopping.
        :raises RuntimeError: if another fetch is already in flight.
        :raises ShardNotFound: if the requested shard does not exist.
        :raises ServiceError: if any service call fails.
        """
        if self._lock.locked():
            raise RuntimeError("a fetch is already in flight for this shard")
        async with self._lock:
            if self._exhausted:
                return None
            if self._cursor.iterator is None and not await self._acquire_iterator():
                return None

            while not self._drain.stopping:
                batch = await self._fetch()
                if batch is not None:
                    return batch
                if self._exhausted:
                    return None
                if await self._drain.wait_for_stop(self._empty_retry_wait):
                    logger.debug("Stopping, skipping empty-batch retry")
            return None

    async def _acquire_iterator(self) -> bool:
        if self._drain.stopping:
            return False
        if self._shard is None:
            self._shard = await self._resolver.resolve(
                self._cursor.stream_name, self._requested_shard_id
            )
            self._cursor.shard_id = self._shard.shard_id
        if self._drain.stopping:
            return False
        self._cursor.iterator = await self._acquirer.acquire(
            self._cursor.stream_name, self._shard, self._last_sequence_number
        )
        return True

    async def _fetch(self) -> RecordBatch | None:
        iterator, shard_id = self._cursor.iterator, self._cursor.shard_id
        if iterator is None or shard_id is None:
            raise RuntimeError("cannot fetch before an iterator has been acquired")
        with self._pending.track():
            result = await self._service.get_records(iterator, self._limit)

        self._cursor.iterator = result.next_iterator
        if result.next_iterator is None:
            logger.info("Shard %s is closed, no further fetches", shard_id)
            self._exhausted = True

        if not result.records:
            logger.debug(
                "Empty fetch from shard %s (millis behind latest: %s)",
                shard_id,
                result.millis_behind_latest,
            )
            return None

        batch = RecordBatch(shard_id, tuple(result.records))
        self._last_sequence_number = batch.checkpoint
        logger.debug("Fetched %d records from shard %s", len(batch), shard_id)
        return batch
