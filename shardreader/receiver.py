"""Module to define the BatchReceiver interface."""

from typing import Protocol

from .checkpoint import Checkpoint, CheckpointReceiver
from .reader import ShardReader
from .record import RecordBatch


class BatchReceiver(CheckpointReceiver, Protocol):
    """
    BatchReceiver is an interface describing an abstraction for handling both record batches
    and the checkpoints which follow them.
    """

    async def batch(self, batch: RecordBatch) -> None:
        """
        Batch method processes the records read from the shard.

        :param batch: the batch which has been read
        """


async def receive_batches(receiver: BatchReceiver, reader: ShardReader) -> None:
    """Bridge between the batches of a ShardReader and the BatchReceiver interface.

    Each batch is passed to the receiver before its checkpoint, so that a receiver which
    persists checkpoints only does so for records it has already processed. Returns once the
    reader has ended.
    """
    async for batch in reader:
        await receiver.batch(batch)
        await receiver.checkpoint(Checkpoint.of(batch))
