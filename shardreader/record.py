"""Module to define the record and record batch dataclasses."""

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Record:
    """All properties received relating to a single record in a shard."""

    sequence_number: str
    data: bytes
    partition_key: str | None = None
    approximate_arrival_timestamp: datetime | None = None


@dataclass(frozen=True)
class RecordBatch:
    """
    The records returned by one get-records call, in shard order.

    A batch is never empty, reordered or split once produced.

    :param shard_id: The shard the records were read from
    :param records: The records, oldest first
    """

    shard_id: str
    records: tuple[Record, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "records", tuple(self.records))
        if not self.records:
            raise ValueError("a record batch cannot be empty")

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)

    def __getitem__(self, index: int) -> Record:
        return self.records[index]

    @property
    def checkpoint(self) -> str:
        """The sequence number of the last record, to resume after."""
        return self.records[-1].sequence_number


def sequence_key(sequence_number: str) -> int:
    """Sort key for sequence numbers, which are decimal strings of varying length."""
    return int(sequence_number)

