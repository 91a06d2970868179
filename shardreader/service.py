"""Module to define the StreamService interface."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .cursor import Shard
from .position import StreamPosition
from .record import Record

# pylint: disable=R0903


@dataclass(frozen=True)
class StreamDescription:
    """The metadata returned when describing a stream."""

    stream_name: str
    shards: Sequence[Shard] = field(default_factory=tuple)


@dataclass(frozen=True)
class GetRecordsResult:
    """
    The result of a single get-records call.

    :param records: The records read, possibly none
    :param next_iterator: The continuation token, `None` once a closed shard is fully read
    :param millis_behind_latest: How far the iterator is behind the tip of the shard
    """

    records: Sequence[Record]
    next_iterator: str | None
    millis_behind_latest: int | None = None


class StreamService(Protocol):
    """
    StreamService is an interface describing the three stream service operations a reader
    needs. Implementations are responsible for authentication, transport, retries and
    encoding, and raise `ServiceError` for any failure.
    """

    async def describe_stream(self, stream_name: str) -> StreamDescription:
        """
        Describe the shards of a stream.

        :param stream_name: the stream to describe
        """
        ...

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        position: StreamPosition,
    ) -> str:
        """
        Acquire an iterator token for the given position in a shard.

        :param stream_name: the stream containing the shard
        :param shard_id: the shard to read
        :param position: where in the shard to start
        """
        ...

    async def get_records(self, iterator: str, limit: int) -> GetRecordsResult:
        """
        Read at most `limit` records using the given iterator token.

        :param iterator: the iterator token returned by a previous call
        :param limit: the maximum number of records to return
        """
        ...
