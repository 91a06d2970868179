"""This module defines the Shard and ShardCursor dataclasses."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Shard:
    """
    A shard as described by the stream service.

    :param shard_id: The shard ID
    :param starting_sequence_number: The sequence number of the first record ever written
    :param ending_sequence_number: The last sequence number, only set once the shard is closed
    """

    shard_id: str
    starting_sequence_number: str
    ending_sequence_number: str | None = None


@dataclass
class ShardCursor:
    """
    The position of a reader within a shard.

    `iterator` is the opaque token for the next get-records call. It is `None` until the shard
    is resolved, and again once the service stops returning a continuation token for a closed
    shard.

    :param stream_name: The stream being read
    :param shard_id: The shard being read, `None` until resolved
    :param iterator: The service iterator token
    """

    stream_name: str
    shard_id: str | None = None
    iterator: str | None = None
