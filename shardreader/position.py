"""This module defines where in a shard a reader starts reading."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .errors import InvalidConfiguration


class ShardIteratorType(str, Enum):
    """The iterator types understood by the stream service."""

    TRIM_HORIZON = "TRIM_HORIZON"
    LATEST = "LATEST"
    AT_SEQUENCE_NUMBER = "AT_SEQUENCE_NUMBER"
    AFTER_SEQUENCE_NUMBER = "AFTER_SEQUENCE_NUMBER"
    AT_TIMESTAMP = "AT_TIMESTAMP"


_NEEDS_SEQUENCE_NUMBER = (
    ShardIteratorType.AT_SEQUENCE_NUMBER,
    ShardIteratorType.AFTER_SEQUENCE_NUMBER,
)


@dataclass(frozen=True)
class StreamPosition:
    """
    A starting-position policy for a shard.

    Use the class methods rather than the constructor. `AT_SEQUENCE_NUMBER` and
    `AFTER_SEQUENCE_NUMBER` carry a sequence number, `AT_TIMESTAMP` carries a timestamp and
    the other types carry neither.

    :param iterator_type: The kind of position
    :param sequence_number: The sequence number the position is relative to
    :param timestamp: The arrival time the position is relative to
    :raises InvalidConfiguration: if the combination of parameters is malformed.
    """

    iterator_type: ShardIteratorType
    sequence_number: str | None = None
    timestamp: datetime | None = None

    def __post_init__(self) -> None:
        try:
            iterator_type = ShardIteratorType(self.iterator_type)
        except ValueError as err:
            msg = f"unknown iterator type {self.iterator_type!r}"
            raise InvalidConfiguration(msg) from err
        object.__setattr__(self, "iterator_type", iterator_type)

        if iterator_type in _NEEDS_SEQUENCE_NUMBER:
            if not self.sequence_number:
                msg = f"{iterator_type.value} requires a sequence number"
                raise InvalidConfiguration(msg)
        elif self.sequence_number is not None:
            msg = f"{iterator_type.value} does not take a sequence number"
            raise InvalidConfiguration(msg)

        if iterator_type is ShardIteratorType.AT_TIMESTAMP:
            if self.timestamp is None:
                raise InvalidConfiguration("AT_TIMESTAMP requires a timestamp")
        elif self.timestamp is not None:
            msg = f"{iterator_type.value} does not take a timestamp"
            raise InvalidConfiguration(msg)

    @classmethod
    def trim_horizon(cls) -> "StreamPosition":
        """Start at the oldest record still available in the shard."""
        return cls(ShardIteratorType.TRIM_HORIZON)

    @classmethod
    def latest(cls) -> "StreamPosition":
        """Only read records written after the iterator is first acquired."""
        return cls(ShardIteratorType.LATEST)

    @classmethod
    def at_sequence_number(cls, sequence_number: str) -> "StreamPosition":
        """Start at the record with the given sequence number, inclusive."""
        return cls(ShardIteratorType.AT_SEQUENCE_NUMBER, sequence_number=sequence_number)

    @classmethod
    def after_sequence_number(cls, sequence_number: str) -> "StreamPosition":
        """Start strictly after the given sequence number, e.g. a saved checkpoint."""
        return cls(ShardIteratorType.AFTER_SEQUENCE_NUMBER, sequence_number=sequence_number)

    @classmethod
    def at_timestamp(cls, timestamp: datetime) -> "StreamPosition":
        """Start at the first record which arrived at or after the given time."""
        return cls(ShardIteratorType.AT_TIMESTAMP, timestamp=timestamp)

    def to_params(self) -> dict[str, str | float]:
        """Return the get-shard-iterator request parameters for this position."""
        params: dict[str, str | float] = {"ShardIteratorType": self.iterator_type.value}
        if self.sequence_number is not None:
            params["StartingSequenceNumber"] = self.sequence_number
        if self.timestamp is not None:
            params["Timestamp"] = self.timestamp.timestamp()
        return params
