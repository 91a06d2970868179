"""Environment-based settings for a ShardReader."""

from datetime import datetime
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_EMPTY_RETRY_WAIT, DEFAULT_MAX_BUFFERED_BATCHES
from .errors import InvalidConfiguration
from .position import ShardIteratorType, StreamPosition


class ReaderSettings(BaseSettings):
    """
    Reader configuration read from `SHARDREADER_*` environment variables or a `.env` file.

    Example:
        SHARDREADER_STREAM_NAME=orders
        SHARDREADER_POSITION=AFTER_SEQUENCE_NUMBER
        SHARDREADER_SEQUENCE_NUMBER=49590338271490256608559692538361571095921575989136588898
        SHARDREADER_LIMIT=500
    """

    model_config = SettingsConfigDict(
        env_prefix="SHARDREADER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    stream_name: str
    shard_id: str | None = None
    position: ShardIteratorType | None = None
    sequence_number: str | None = None
    timestamp: datetime | None = None
    limit: int | None = None
    empty_retry_wait: float = Field(DEFAULT_EMPTY_RETRY_WAIT, ge=0)
    max_buffered_batches: int = Field(DEFAULT_MAX_BUFFERED_BATCHES, ge=1)

    def to_position(self) -> StreamPosition | None:
        """
        Build the starting position.

        :raises InvalidConfiguration: if the position settings do not fit together.
        """
        if self.position is None:
            if self.sequence_number is not None or self.timestamp is not None:
                raise InvalidConfiguration("sequence number or timestamp given without position")
            return None
        return StreamPosition(
            self.position,
            sequence_number=self.sequence_number,
            timestamp=self.timestamp,
        )


@lru_cache()
def get_settings() -> ReaderSettings:
    """Return the settings of this process, read once."""
    return ReaderSettings()  # type: ignore[call-arg]
