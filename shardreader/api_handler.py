"""Api handlers definition."""

import base64
import json
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from .constants import KINESIS_CONTENT_TYPE, KINESIS_TARGET_PREFIX
from .errors import InvalidConfiguration, ServiceError
from .position import StreamPosition
from .record import Record
from .service import StreamService


class KinesisFastApiHandler:
    """Handler serving a StreamService over the Kinesis JSON protocol using fastapi."""

    def __init__(self, service: StreamService) -> None:
        """Initialize the KinesisFastApiHandler with the StreamService to expose."""
        self.service = service

    async def validate(self, request: Request) -> tuple[str, dict[str, Any]]:
        """Validate the target header and the JSON body.
        Return the operation name and its parameters.
        """
        target = request.headers.get("x-amz-target")
        if target is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Header X-Amz-Target not found"
            )
        prefix, _, operation = target.partition(".")
        if prefix != KINESIS_TARGET_PREFIX or not operation:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid header X-Amz-Target"
            )
        try:
            params = json.loads(await request.body())
        except ValueError as err:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body"
            ) from err
        if not isinstance(params, dict):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body"
            )
        return operation, params

    async def handle(self, request: Request) -> JSONResponse:
        """Handle the request after validation.
        Return final response to the client.
        """
        operation, params = await self.validate(request)
        try:
            if operation == "DescribeStream":
                body = await self.describe_stream(params)
            elif operation == "GetShardIterator":
                body = await self.get_shard_iterator(params)
            elif operation == "GetRecords":
                body = await self.get_records(params)
            else:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Unsupported operation {operation}",
                )
        except ServiceError as err:
            return self.error_response(err)
        return JSONResponse(body, media_type=KINESIS_CONTENT_TYPE)

    async def describe_stream(self, params: dict[str, Any]) -> dict[str, Any]:
        """Describe the requested stream."""
        description = await self.service.describe_stream(self._require(params, "StreamName"))
        return {
            "StreamDescription": {
                "StreamName": description.stream_name,
                "StreamStatus": "ACTIVE",
                "HasMoreShards": False,
                "Shards": [
                    {
                        "ShardId": shard.shard_id,
                        "SequenceNumberRange": {
                            "StartingSequenceNumber": shard.starting_sequence_number,
                            "EndingSequenceNumber": shard.ending_sequence_number,
                        },
                    }
                    for shard in description.shards
                ],
            }
        }

    async def get_shard_iterator(self, params: dict[str, Any]) -> dict[str, Any]:
        """Acquire an iterator for the requested position."""
        timestamp = params.get("Timestamp")
        try:
            position = StreamPosition(
                self._require(params, "ShardIteratorType"),
                sequence_number=params.get("StartingSequenceNumber"),
                timestamp=(
                    datetime.fromtimestamp(timestamp, tz=timezone.utc)
                    if timestamp is not None
                    else None
                ),
            )
        except (InvalidConfiguration, TypeError) as err:
            raise ServiceError(str(err), "InvalidArgumentException") from err
        iterator = await self.service.get_shard_iterator(
            self._require(params, "StreamName"), self._require(params, "ShardId"), position
        )
        return {"ShardIterator": iterator}

    async def get_records(self, params: dict[str, Any]) -> dict[str, Any]:
        """Read records with the given iterator."""
        limit = params.get("Limit", 10000)
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ServiceError("Limit must be an integer", "InvalidArgumentException")
        result = await self.service.get_records(self._require(params, "ShardIterator"), limit)
        return {
            "Records": [self._format_record(record) for record in result.records],
            "NextShardIterator": result.next_iterator,
            "MillisBehindLatest": result.millis_behind_latest,
        }

    def error_response(self, err: ServiceError) -> JSONResponse:
        """Return the error body the client expects for a ServiceError."""
        return JSONResponse(
            {"__type": err.code or "InternalFailureException", "message": err.message},
            status_code=status.HTTP_400_BAD_REQUEST,
            media_type=KINESIS_CONTENT_TYPE,
        )

    def _require(self, params: dict[str, Any], name: str) -> Any:
        value = params.get(name)
        if value is None:
            raise ServiceError(f"Parameter {name} not found", "ValidationException")
        return value

    def _format_record(self, record: Record) -> dict[str, Any]:
        arrival = record.approximate_arrival_timestamp
        return {
            "SequenceNumber": record.sequence_number,
            "Data": base64.b64encode(record.data).decode(),
            "PartitionKey": record.partition_key,
            "ApproximateArrivalTimestamp": arrival.timestamp() if arrival else None,
        }
