"""Module resolving which shard of a stream to read."""

import logging

from .cursor import Shard
from .drain import PendingCounter
from .errors import ShardNotFound
from .service import StreamService

logger = logging.getLogger(__name__)


class ShardResolver:
    """Looks up a shard in the stream description."""

    def __init__(self, service: StreamService, pending: PendingCounter) -> None:
        self._service = service
        self._pending = pending

    async def resolve(self, stream_name: str, shard_id: str | None = None) -> Shard:
        """
        Describe the stream and pick a shard from it.

        Without a requested shard ID the first shard listed by the service is used. The order
        is defined by the service and not guaranteed to be stable for multi-shard streams.

        :param stream_name: the stream to describe
        :param shard_id: an optional shard which must exist in the stream
        :raises ShardNotFound: if the shard does not exist, or the stream has no shards.
        :raises ServiceError: if the stream cannot be described.
        """
        with self._pending.track():
            description = await self._service.describe_stream(stream_name)

        if shard_id is not None:
            for shard in description.shards:
                if shard.shard_id == shard_id:
                    return shard
            raise ShardNotFound(shard_id)

        if not description.shards:
            raise ShardNotFound(None)
        shard = description.shards[0]
        logger.debug("Stream %s: using first shard %s", stream_name, shard.shard_id)
        return shard
