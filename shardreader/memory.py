"""An in-memory StreamService for local development and tests."""

import base64
import binascii
import hashlib
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .constants import MAX_RECORDS_PER_FETCH
from .cursor import Shard
from .errors import ServiceError
from .position import ShardIteratorType, StreamPosition
from .record import Record, sequence_key
from .service import GetRecordsResult, StreamDescription

FIRST_SEQUENCE_NUMBER = 49_000_000_000_000_000_000_000


@dataclass
class _ShardLog:
    shard: Shard
    records: list[Record] = field(default_factory=list)
    closed: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStream:
    """
    Streams, shards and records kept in memory.

    Sequence numbers are decimal strings increasing across the whole stream. Records are
    routed to shards by the MD5 hash of their partition key, unless a shard is given.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        """
        :param clock: returns the arrival time of new records; also used for AT_TIMESTAMP.
        """
        self._clock = clock
        self._streams: dict[str, list[_ShardLog]] = {}
        self._next_sequence_number = FIRST_SEQUENCE_NUMBER

    def create_stream(self, stream_name: str, shard_count: int = 1) -> None:
        """Create a stream with the given number of open shards."""
        if stream_name in self._streams:
            msg = f"Stream {stream_name} already exists"
            raise ServiceError(msg, "ResourceInUseException")
        if shard_count < 1:
            raise ServiceError("shard count must be at least 1", "InvalidArgumentException")
        self._streams[stream_name] = [
            _ShardLog(Shard(f"shardId-{index:012d}", str(self._next_sequence_number)))
            for index in range(shard_count)
        ]

    def delete_stream(self, stream_name: str) -> None:
        """Forget a stream and all its records."""
        self._shards(stream_name)
        del self._streams[stream_name]

    def put_record(
        self,
        stream_name: str,
        data: bytes,
        partition_key: str = "key",
        shard_id: str | None = None,
    ) -> str:
        """
        Append a record.

        :return: the sequence number assigned to the record
        """
        log = self._route(stream_name, partition_key, shard_id)
        if log.closed:
            msg = f"Shard {log.shard.shard_id} is closed"
            raise ServiceError(msg, "InvalidArgumentException")
        sequence_number = str(self._next_sequence_number)
        self._next_sequence_number += 1
        log.records.append(
            Record(
                sequence_number=sequence_number,
                data=data,
                partition_key=partition_key,
                approximate_arrival_timestamp=self._clock(),
            )
        )
        return sequence_number

    def put_records(
        self,
        stream_name: str,
        records: Iterable[bytes],
        partition_key: str = "key",
        shard_id: str | None = None,
    ) -> list[str]:
        """Append several records, returning their sequence numbers in order."""
        return [
            self.put_record(stream_name, data, partition_key, shard_id) for data in records
        ]

    def close_shard(self, stream_name: str, shard_id: str) -> None:
        """
        Close a shard, as a reshard would. Readers get no continuation token once they have
        read its last record.
        """
        log = self._find(stream_name, shard_id)
        log.closed = True
        ending = log.records[-1].sequence_number if log.records else None
        log.shard = Shard(log.shard.shard_id, log.shard.starting_sequence_number, ending)

    async def describe_stream(self, stream_name: str) -> StreamDescription:
        """Describe the shards of a stream."""
        return StreamDescription(
            stream_name=stream_name,
            shards=tuple(log.shard for log in self._shards(stream_name)),
        )

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        position: StreamPosition,
    ) -> str:
        """Acquire an iterator token for the given position."""
        log = self._find(stream_name, shard_id)
        return self._encode_iterator(stream_name, shard_id, self._index_of(log, position))

    async def get_records(self, iterator: str, limit: int) -> GetRecordsResult:
        """Read at most `limit` records from the iterator position."""
        if not 1 <= limit <= MAX_RECORDS_PER_FETCH:
            msg = f"Limit must be between 1 and {MAX_RECORDS_PER_FETCH}"
            raise ServiceError(msg, "InvalidArgumentException")
        stream_name, shard_id, index = self._decode_iterator(iterator)
        log = self._find(stream_name, shard_id)

        records = log.records[index : index + limit]
        next_index = index + len(records)
        if log.closed and next_index >= len(log.records):
            next_iterator = None
        else:
            next_iterator = self._encode_iterator(stream_name, shard_id, next_index)

        millis_behind = 0
        if next_index < len(log.records):
            arrival = log.records[next_index].approximate_arrival_timestamp
            if arrival is not None:
                millis_behind = max(0, int((self._clock() - arrival).total_seconds() * 1000))
        return GetRecordsResult(records, next_iterator, millis_behind)

    def _shards(self, stream_name: str) -> list[_ShardLog]:
        try:
            return self._streams[stream_name]
        except KeyError as error:
            msg = f"Stream {stream_name} not found"
            raise ServiceError(msg, "ResourceNotFoundException") from error

    def _find(self, stream_name: str, shard_id: str) -> _ShardLog:
        for log in self._shards(stream_name):
            if log.shard.shard_id == shard_id:
                return log
        msg = f"Shard {shard_id} in stream {stream_name} not found"
        raise ServiceError(msg, "ResourceNotFoundException")

    def _route(self, stream_name: str, partition_key: str, shard_id: str | None) -> _ShardLog:
        if shard_id is not None:
            return self._find(stream_name, shard_id)
        logs = self._shards(stream_name)
        digest = hashlib.md5(partition_key.encode(), usedforsecurity=False).hexdigest()
        return logs[int(digest, 16) % len(logs)]

    def _index_of(self, log: _ShardLog, position: StreamPosition) -> int:
        iterator_type = position.iterator_type
        if iterator_type is ShardIteratorType.TRIM_HORIZON:
            return 0
        if iterator_type is ShardIteratorType.LATEST:
            return len(log.records)
        if position.timestamp is not None:
            timestamp = position.timestamp
            return next(
                (
                    index
                    for index, record in enumerate(log.records)
                    if record.approximate_arrival_timestamp is not None
                    and record.approximate_arrival_timestamp >= timestamp
                ),
                len(log.records),
            )

        if position.sequence_number is None:
            msg = f"{iterator_type.value} requires a StartingSequenceNumber"
            raise ServiceError(msg, "InvalidArgumentException")
        try:
            target = sequence_key(position.sequence_number)
        except ValueError as error:
            msg = f"Invalid sequence number {position.sequence_number!r}"
            raise ServiceError(msg, "InvalidArgumentException") from error
        inclusive = iterator_type is ShardIteratorType.AT_SEQUENCE_NUMBER
        for index, record in enumerate(log.records):
            key = sequence_key(record.sequence_number)
            if key > target or (inclusive and key == target):
                return index
        return len(log.records)

    def _encode_iterator(self, stream_name: str, shard_id: str, index: int) -> str:
        raw = json.dumps({"stream": stream_name, "shard": shard_id, "index": index})
        return base64.urlsafe_b64encode(raw.encode()).decode()

    def _decode_iterator(self, iterator: str) -> tuple[str, str, int]:
        try:
            raw = json.loads(base64.urlsafe_b64decode(iterator.encode()))
            return str(raw["stream"]), str(raw["shard"]), int(raw["index"])
        except (binascii.Error, ValueError, KeyError, TypeError) as error:
            raise ServiceError("Invalid ShardIterator", "InvalidArgumentException") from error
