"""
This module defines the errors a ShardReader can surface.

Every error raised while a reader is running is terminal: the pump halts, the error is raised
once from `ShardReader.read`, and the reader is ended afterwards. `InvalidConfiguration` is
only ever raised while constructing a reader or a `StreamPosition`.
"""


class ShardReaderError(Exception):
    """Base class for all errors raised by shardreader."""


class ServiceError(ShardReaderError):
    """
    ServiceError wraps any failure of the stream service (describe, get-iterator or
    get-records). It has two attributes, `message` and `code`: `message` is a human-readable
    error message and `code` is the error type reported by the service, e.g.
    `ResourceNotFoundException`.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"{self.code}: {self.message}"
        return self.message


class ShardNotFound(ShardReaderError):
    """The requested shard is not part of the stream description."""

    def __init__(self, shard_id: str | None) -> None:
        self.shard_id = shard_id
        if shard_id is None:
            super().__init__("stream has no shards")
        else:
            super().__init__(f"Shard {shard_id} does not exist")


class InvalidConfiguration(ShardReaderError, ValueError):
    """A reader or starting position was constructed with invalid parameters."""


class PositionConsumed(ShardReaderError):
    """
    Raised when an iterator would have to be re-acquired from a `LATEST` position which has
    already been used once, and no record has been delivered to resume after. Re-applying
    `LATEST` would skip every record written between the two acquisitions.
    """

    def __init__(self, shard_id: str) -> None:
        super().__init__(f"LATEST position for shard {shard_id} was already consumed")
        self.shard_id = shard_id
