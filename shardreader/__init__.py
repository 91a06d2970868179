"""ShardReader module."""

from .api_handler import KinesisFastApiHandler
from .checkpoint import Checkpoint, CheckpointEmitter, CheckpointLog, CheckpointReceiver
from .client import KinesisClient
from .constants import DEFAULT_EMPTY_RETRY_WAIT, MAX_RECORDS_PER_FETCH
from .cursor import Shard, ShardCursor
from .drain import ReaderState
from .errors import (
    InvalidConfiguration,
    PositionConsumed,
    ServiceError,
    ShardNotFound,
    ShardReaderError,
)
from .memory import InMemoryStream
from .position import ShardIteratorType, StreamPosition
from .reader import ShardReader
from .receiver import BatchReceiver, receive_batches
from .record import Record, RecordBatch
from .service import GetRecordsResult, StreamDescription, StreamService
from .settings import ReaderSettings, get_settings

__all__ = [
    "DEFAULT_EMPTY_RETRY_WAIT",
    "MAX_RECORDS_PER_FETCH",
    "BatchReceiver",
    "Checkpoint",
    "CheckpointEmitter",
    "CheckpointLog",
    "CheckpointReceiver",
    "GetRecordsResult",
    "InMemoryStream",
    "InvalidConfiguration",
    "KinesisClient",
    "KinesisFastApiHandler",
    "PositionConsumed",
    "ReaderSettings",
    "ReaderState",
    "Record",
    "RecordBatch",
    "ServiceError",
    "Shard",
    "ShardCursor",
    "ShardIteratorType",
    "ShardNotFound",
    "ShardReader",
    "ShardReaderError",
    "StreamDescription",
    "StreamPosition",
    "StreamService",
    "get_settings",
    "receive_batches",
]
