"""Module to publish and collect the checkpoints of delivered batches."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from .position import StreamPosition
from .record import RecordBatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checkpoint:
    """
    A dataclass encapsulating both the shard ID and the sequence number of the last record
    delivered from this shard.

    :param shard_id: The shard ID
    :param sequence_number: The sequence number to resume after
    """

    shard_id: str
    sequence_number: str

    @classmethod
    def of(cls, batch: RecordBatch) -> "Checkpoint":
        """Return the checkpoint of the given batch."""
        return cls(shard_id=batch.shard_id, sequence_number=batch.checkpoint)

    def resume_position(self) -> StreamPosition:
        """Return the position which continues right after this checkpoint."""
        return StreamPosition.after_sequence_number(self.sequence_number)


class CheckpointReceiver(Protocol):
    """CheckpointReceiver is an interface describing an abstraction for handling checkpoints."""

    async def checkpoint(self, checkpoint: Checkpoint) -> None:
        """
        Checkpoint method processes the checkpoint of a delivered batch.

        :param checkpoint: the checkpoint, usable to resume reading later
        """


class CheckpointEmitter:
    """
    Publishes one checkpoint per delivered batch to every subscribed receiver, in the order the
    batches are delivered. Receivers are awaited in subscription order and their errors
    propagate to the consumer.
    """

    def __init__(self) -> None:
        self._receivers: list[CheckpointReceiver] = []

    def subscribe(self, receiver: CheckpointReceiver) -> None:
        """Add a checkpoint receiver, once."""
        if receiver not in self._receivers:
            self._receivers.append(receiver)

    def unsubscribe(self, receiver: CheckpointReceiver) -> None:
        """Remove a checkpoint receiver; unknown receivers are ignored."""
        if receiver in self._receivers:
            self._receivers.remove(receiver)

    @property
    def receiver_count(self) -> int:
        """Number of subscribed receivers."""
        return len(self._receivers)

    async def emit(self, batch: RecordBatch) -> Checkpoint:
        """
        Emit the checkpoint of the given batch.

        :param batch: the batch which is being delivered
        :return: the checkpoint emitted
        """
        checkpoint = Checkpoint.of(batch)
        logger.debug(
            "Checkpoint shard=%s sequence_number=%s",
            checkpoint.shard_id,
            checkpoint.sequence_number,
        )
        for receiver in list(self._receivers):
            await receiver.checkpoint(checkpoint)
        return checkpoint


class CheckpointLog(CheckpointReceiver):
    """Receive checkpoints and remember them."""

    def __init__(self) -> None:
        """Initialize the CheckpointLog with empty state."""
        self._checkpoints: list[Checkpoint] = []

    def clear(self) -> None:
        """Forget all received checkpoints."""
        self._checkpoints.clear()

    @property
    def checkpoints(self) -> Sequence[Checkpoint]:
        """Return all checkpoints received, oldest first."""
        return self._checkpoints

    @property
    def latest(self) -> Checkpoint | None:
        """Return the most recent checkpoint, if any."""
        return self._checkpoints[-1] if self._checkpoints else None

    def resume_position(self) -> StreamPosition | None:
        """Return the position to continue from the latest checkpoint, if any."""
        latest = self.latest
        return latest.resume_position() if latest else None

    async def checkpoint(self, checkpoint: Checkpoint) -> None:
        """
        Add the given checkpoint to the log.

        :param checkpoint: the checkpoint to continue processing from later
        """
        self._checkpoints.append(checkpoint)
