"""Module turning a starting position into a shard iterator."""

import logging

from .cursor import Shard
from .drain import PendingCounter
from .errors import PositionConsumed
from .position import ShardIteratorType, StreamPosition
from .service import StreamService

logger = logging.getLogger(__name__)


class IteratorAcquirer:
    """
    Acquires shard iterators for a starting position.

    A `LATEST` position is consumed by its first successful acquisition. Any later
    acquisition continues after the last delivered record when there is one, and fails with
    `PositionConsumed` rather than applying `LATEST` a second time when there is not.
    """

    def __init__(
        self,
        service: StreamService,
        pending: PendingCounter,
        position: StreamPosition | None = None,
    ) -> None:
        """
        :param service: the stream service
        :param pending: counter of in-flight service calls
        :param position: where to start; None starts at the shard's first sequence number
        """
        self._service = service
        self._pending = pending
        self._position = position
        self._latest_consumed = False

    @property
    def latest_consumed(self) -> bool:
        """Whether a LATEST position has already been used."""
        return self._latest_consumed

    def position_for(self, shard: Shard, last_sequence_number: str | None = None) -> StreamPosition:
        """
        Return the concrete position to request an iterator for.

        :param shard: the resolved shard
        :param last_sequence_number: the sequence number of the last delivered record, if any
        :raises PositionConsumed: if only an already used LATEST position is left.
        """
        if last_sequence_number is not None:
            return StreamPosition.after_sequence_number(last_sequence_number)
        if self._position is None:
            return StreamPosition.at_sequence_number(shard.starting_sequence_number)
        if self._position.iterator_type is ShardIteratorType.LATEST and self._latest_consumed:
            raise PositionConsumed(shard.shard_id)
        return self._position

    async def acquire(
        self,
        stream_name: str,
        shard: Shard,
        last_sequence_number: str | None = None,
    ) -> str:
        """
        Acquire an iterator token. Service errors are propagated as they are.

        :param stream_name: the stream containing the shard
        :param shard: the resolved shard
        :param last_sequence_number: the sequence number of the last delivered record, if any
        :raises PositionConsumed: if only an already used LATEST position is left.
        :raises ServiceError: if the service refuses the request.
        """
        position = self.position_for(shard, last_sequence_number)
        with self._pending.track():
            iterator = await self._service.get_shard_iterator(
                stream_name, shard.shard_id, position
            )
        if position.iterator_type is ShardIteratorType.LATEST:
            self._latest_consumed = True
        logger.debug(
            "Acquired %s iterator for %s/%s",
            position.iterator_type.value,
            stream_name,
            shard.shard_id,
        )
        return iterator
