"""Module containing an HTTP StreamService speaking the Kinesis JSON protocol."""

import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from .constants import KINESIS_CONTENT_TYPE, KINESIS_TARGET_PREFIX
from .cursor import Shard
from .errors import ServiceError
from .position import StreamPosition
from .record import Record
from .service import GetRecordsResult, StreamDescription

logger = logging.getLogger(__name__)


class KinesisClient:
    """Client-side code to call the describe, get-iterator and get-records operations."""

    def __init__(self, url: str, http_client: httpx.AsyncClient) -> None:
        """
        Initializes a new instance of the KinesisClient class.

        :param url: The URL of the service endpoint.
        :param http_client: A httpx AsyncClient under which to make the HTTP requests.
            This allows one time setup of authentication (e.g. request signing via
            `httpx.Auth`) etc. on the session, and increases performance when polling
            frequently due to connection pooling.
        """
        self.url = url
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Return the http_client being used by this client."""
        return self._http_client

    async def describe_stream(self, stream_name: str) -> StreamDescription:
        """
        Describe the shards of a stream.

        :param stream_name: The stream to describe.
        :raises ServiceError: if the call fails or the response cannot be parsed.
        """
        body = await self._call("DescribeStream", {"StreamName": stream_name})
        try:
            description = body["StreamDescription"]
            return StreamDescription(
                stream_name=description["StreamName"],
                shards=tuple(self._parse_shard(shard) for shard in description["Shards"]),
            )
        except (KeyError, TypeError) as error:
            msg = "error while parsing stream description"
            raise ServiceError(msg, "SerializationException") from error

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        position: StreamPosition,
    ) -> str:
        """
        Acquire an iterator token.

        :param stream_name: The stream containing the shard.
        :param shard_id: The shard to read.
        :param position: Where in the shard to start.
        :raises ServiceError: if the call fails or the response cannot be parsed.
        """
        params: dict[str, Any] = {"StreamName": stream_name, "ShardId": shard_id}
        params.update(position.to_params())
        body = await self._call("GetShardIterator", params)
        iterator = body.get("ShardIterator")
        if not isinstance(iterator, str):
            msg = "error while parsing shard iterator"
            raise ServiceError(msg, "SerializationException")
        return iterator

    async def get_records(self, iterator: str, limit: int) -> GetRecordsResult:
        """
        Read a batch of records.

        :param iterator: The iterator token.
        :param limit: The maximum number of records to return.
        :raises ServiceError: if the call fails or the response cannot be parsed.
        """
        body = await self._call("GetRecords", {"ShardIterator": iterator, "Limit": limit})
        try:
            return GetRecordsResult(
                records=[self._parse_record(record) for record in body["Records"]],
                next_iterator=body.get("NextShardIterator"),
                millis_behind_latest=body.get("MillisBehindLatest"),
            )
        except (KeyError, TypeError, ValueError, binascii.Error) as error:
            msg = "error while parsing records"
            raise ServiceError(msg, "SerializationException") from error

    async def _call(self, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        """
        Post a single operation to the service.

        :param operation: The operation name, e.g. GetRecords.
        :param params: The JSON request body.
        :raises ServiceError: if unable to call the endpoint, the response status code does not
            indicate success, or the response is not a JSON object.
        """
        headers = {
            "X-Amz-Target": f"{KINESIS_TARGET_PREFIX}.{operation}",
            "Content-Type": KINESIS_CONTENT_TYPE,
        }
        try:
            res = await self._http_client.post(
                self.url, content=json.dumps(params), headers=headers
            )
        except httpx.RequestError as error:
            msg = f"{operation} request failed: {error}"
            raise ServiceError(msg) from error

        if res.is_error:
            raise self._parse_error(res)

        try:
            body = res.json()
        except json.JSONDecodeError as error:
            msg = f"{operation} response is not valid JSON"
            raise ServiceError(msg, "SerializationException") from error
        if not isinstance(body, dict):
            msg = f"{operation} response is not a JSON object"
            raise ServiceError(msg, "SerializationException")
        return body

    def _parse_error(self, res: httpx.Response) -> ServiceError:
        """
        Build the ServiceError for an unsuccessful response.

        :param res: the server response
        """
        try:
            body = res.json()
        except json.JSONDecodeError:
            body = None
        if not isinstance(body, dict):
            body = {}

        code = body.get("__type")
        if isinstance(code, str):
            # e.g. "com.amazonaws.kinesis.v20131202#ResourceNotFoundException"
            code = code.rsplit("#", 1)[-1]
        message = (
            body.get("message")
            or body.get("Message")
            or body.get("detail")
            or f"HTTP {res.status_code} {res.reason_phrase}"
        )
        logger.debug("Service error %s: %s", code, message)
        return ServiceError(str(message), code)

    def _parse_shard(self, raw_shard: dict[str, Any]) -> Shard:
        sequence_range = raw_shard["SequenceNumberRange"]
        return Shard(
            shard_id=raw_shard["ShardId"],
            starting_sequence_number=sequence_range["StartingSequenceNumber"],
            ending_sequence_number=sequence_range.get("EndingSequenceNumber"),
        )

    def _parse_record(self, raw_record: dict[str, Any]) -> Record:
        arrival = raw_record.get("ApproximateArrivalTimestamp")
        return Record(
            sequence_number=raw_record["SequenceNumber"],
            data=base64.b64decode(raw_record["Data"], validate=True),
            partition_key=raw_record.get("PartitionKey"),
            approximate_arrival_timestamp=(
                datetime.fromtimestamp(arrival, tz=timezone.utc) if arrival is not None else None
            ),
        )
