import asyncio
import os

import pytest
from shardreader import GetRecordsResult, InMemoryStream

STREAM_NAME = "test-stream"


class HeldService(InMemoryStream):
    """An InMemoryStream whose get-records calls stay in flight until released."""

    def __init__(self) -> None:
        super().__init__()
        self.fetch_started = asyncio.Event()
        self.release = asyncio.Event()
        self.fetches = 0

    async def get_records(self, iterator: str, limit: int) -> GetRecordsResult:
        self.fetches += 1
        self.fetch_started.set()
        await self.release.wait()
        return await super().get_records(iterator, limit)


@pytest.fixture
def stream_name() -> str:
    return STREAM_NAME


@pytest.fixture
def stream(stream_name: str) -> InMemoryStream:
    service = InMemoryStream()
    service.create_stream(stream_name)
    return service


@pytest.fixture
def held_stream(stream_name: str) -> HeldService:
    service = HeldService()
    service.create_stream(stream_name)
    return service


def random_payloads(count: int) -> list[bytes]:
    return [os.urandom(10) for _ in range(count)]
