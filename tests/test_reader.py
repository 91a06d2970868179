import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from conftest import HeldService, random_payloads
from pytest_mock import MockerFixture
from shardreader import (
    Checkpoint,
    CheckpointLog,
    InMemoryStream,
    InvalidConfiguration,
    ReaderState,
    RecordBatch,
    ServiceError,
    ShardNotFound,
    ShardReader,
    StreamPosition,
)
from shardreader.record import sequence_key

RETRY_WAIT = 0.01


async def read_records(reader: ShardReader, count: int) -> list[RecordBatch]:
    batches: list[RecordBatch] = []
    total = 0
    while total < count:
        batch = await asyncio.wait_for(reader.read(), timeout=2)
        assert batch is not None, "stream ended early"
        batches.append(batch)
        total += len(batch)
    assert total == count, "should not read extra records"
    return batches


async def test_reads_records_that_already_exist(stream: InMemoryStream, stream_name: str) -> None:
    """Test that a reader delivers existing records in one batch, in order."""
    # arrange
    payloads = random_payloads(20)
    stream.put_records(stream_name, payloads)
    reader = ShardReader(stream, stream_name, limit=100, empty_retry_wait=RETRY_WAIT)

    # act
    batches = await read_records(reader, 20)
    await reader.close()

    # assert
    assert len(batches) == 1
    assert [record.data for record in batches[0]] == payloads
    assert await reader.read() is None
    assert reader.state is ReaderState.ENDED


async def test_reads_ongoing_records(stream: InMemoryStream, stream_name: str) -> None:
    """Test that records written after the reader started polling are delivered."""
    # arrange
    payloads = random_payloads(20)
    reader = ShardReader(stream, stream_name, limit=100, empty_retry_wait=RETRY_WAIT)

    async def write_later() -> None:
        await asyncio.sleep(0.05)
        stream.put_records(stream_name, payloads)

    # act
    writer = asyncio.create_task(write_later())
    batches = await read_records(reader, 20)
    await writer
    await reader.close()

    # assert
    assert [record.data for batch in batches for record in batch] == payloads


async def test_reads_only_latest_records(stream: InMemoryStream, stream_name: str) -> None:
    """Test that LATEST skips records written before the iterator was acquired."""
    # arrange
    stream.put_records(stream_name, random_payloads(20))
    subsequent = random_payloads(20)
    reader = ShardReader(
        stream,
        stream_name,
        position=StreamPosition.latest(),
        limit=100,
        empty_retry_wait=RETRY_WAIT,
    )

    # act
    first_read = asyncio.create_task(reader.read())
    await asyncio.sleep(0.05)
    stream.put_records(stream_name, subsequent)
    first = await asyncio.wait_for(first_read, timeout=2)
    assert first is not None
    rest = await read_records(reader, 20 - len(first))
    await reader.close()

    # assert
    assert [record.data for batch in [first, *rest] for record in batch] == subsequent


async def test_emits_checkpoints_and_obeys_limit(stream: InMemoryStream, stream_name: str) -> None:
    """Test that every batch respects the limit and is followed by one checkpoint."""
    # arrange
    stream.put_records(stream_name, random_payloads(20))
    log = CheckpointLog()
    reader = ShardReader(
        stream, stream_name, limit=1, empty_retry_wait=RETRY_WAIT, checkpoint_receiver=log
    )

    # act
    batches = await read_records(reader, 20)
    await reader.close()

    # assert
    assert all(len(batch) == 1 for batch in batches)
    assert [checkpoint.sequence_number for checkpoint in log.checkpoints] == [
        batch.checkpoint for batch in batches
    ]
    keys = [sequence_key(checkpoint.sequence_number) for checkpoint in log.checkpoints]
    assert all(earlier < later for earlier, later in zip(keys, keys[1:]))
    assert {checkpoint.shard_id for checkpoint in log.checkpoints} == {"shardId-000000000000"}


async def test_reads_after_checkpoint(stream: InMemoryStream, stream_name: str) -> None:
    """Test that resuming from the checkpoint of record 9 yields exactly records 10 to 14."""
    # arrange
    payloads = random_payloads(15)
    stream.put_records(stream_name, payloads)
    log = CheckpointLog()
    first_reader = ShardReader(
        stream, stream_name, limit=1, empty_retry_wait=RETRY_WAIT, checkpoint_receiver=log
    )
    await read_records(first_reader, 10)
    await first_reader.close()
    assert log.latest is not None

    # act
    second_reader = ShardReader(
        stream,
        stream_name,
        position=log.resume_position(),
        limit=1,
        empty_retry_wait=RETRY_WAIT,
    )
    batches = await read_records(second_reader, 5)
    await second_reader.close()

    # assert
    assert [batch[0].data for batch in batches] == payloads[10:]
    assert await second_reader.read() is None


async def test_reads_from_sequence_number(stream: InMemoryStream, stream_name: str) -> None:
    """Test that AT_SEQUENCE_NUMBER includes the given record."""
    # arrange
    payloads = random_payloads(15)
    sequence_numbers = stream.put_records(stream_name, payloads)
    reader = ShardReader(
        stream,
        stream_name,
        position=StreamPosition.at_sequence_number(sequence_numbers[9]),
        limit=1,
        empty_retry_wait=RETRY_WAIT,
    )

    # act
    batches = await read_records(reader, 6)
    await reader.close()

    # assert
    assert [batch[0].data for batch in batches] == payloads[9:]


async def test_reads_from_timestamp(stream_name: str) -> None:
    """Test that AT_TIMESTAMP starts at the first record which arrived at that time."""
    # arrange
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ticks = iter(now + timedelta(seconds=second) for second in range(100))
    stream = InMemoryStream(clock=lambda: next(ticks))
    stream.create_stream(stream_name)
    payloads = random_payloads(5)
    stream.put_records(stream_name, payloads)
    reader = ShardReader(
        stream,
        stream_name,
        position=StreamPosition.at_timestamp(now + timedelta(seconds=2)),
        limit=10,
        empty_retry_wait=RETRY_WAIT,
    )

    # act
    batches = await read_records(reader, 3)
    await reader.close()

    # assert
    assert [record.data for record in batches[0]] == payloads[2:]


async def test_reads_requested_shard(stream_name: str) -> None:
    """Test that a requested shard is read instead of the first one."""
    # arrange
    stream = InMemoryStream()
    stream.create_stream(stream_name, shard_count=2)
    stream.put_records(stream_name, [b"first"], shard_id="shardId-000000000000")
    stream.put_records(stream_name, [b"second"], shard_id="shardId-000000000001")
    reader = ShardReader(
        stream, stream_name, shard_id="shardId-000000000001", empty_retry_wait=RETRY_WAIT
    )

    # act
    batch = await asyncio.wait_for(reader.read(), timeout=2)
    await reader.close()

    # assert
    assert batch is not None
    assert batch.shard_id == "shardId-000000000001"
    assert reader.shard_id == "shardId-000000000001"
    assert [record.data for record in batch] == [b"second"]


async def test_raises_shard_not_found_once(stream: InMemoryStream, stream_name: str) -> None:
    """Test that a missing shard is raised once, with no batches or checkpoints."""
    # arrange
    stream.put_records(stream_name, random_payloads(3))
    log = CheckpointLog()
    reader = ShardReader(
        stream, stream_name, shard_id="shardId-000000000099", checkpoint_receiver=log
    )

    # act & assert
    with pytest.raises(ShardNotFound) as excinfo:
        await reader.read()
    assert excinfo.value.shard_id == "shardId-000000000099"
    assert "Shard shardId-000000000099 does not exist" in str(excinfo.value)

    # assert no duplicate error and no data afterwards
    assert await reader.read() is None
    assert not log.checkpoints
    assert reader.state is ReaderState.ENDED
    await reader.close()


async def test_raises_service_error_once_and_stops_fetching(
    stream: InMemoryStream, stream_name: str, mocker: MockerFixture
) -> None:
    """Test that a get-records failure halts the reader and is surfaced once."""
    # arrange
    get_records = mocker.patch.object(
        stream,
        "get_records",
        side_effect=ServiceError("Rate exceeded", "ProvisionedThroughputExceededException"),
    )
    reader = ShardReader(stream, stream_name, empty_retry_wait=RETRY_WAIT)

    # act & assert
    with pytest.raises(ServiceError, match="Rate exceeded") as excinfo:
        await reader.read()
    assert excinfo.value.code == "ProvisionedThroughputExceededException"
    assert await reader.read() is None

    await asyncio.sleep(0.05)
    get_records.assert_called_once()
    assert reader.pending == 0
    await reader.close()


async def test_empty_shard_keeps_polling_until_closed(
    stream: InMemoryStream, stream_name: str, mocker: MockerFixture
) -> None:
    """Test that an empty shard produces nothing and does not end the stream on its own."""
    # arrange
    get_records = mocker.spy(stream, "get_records")
    log = CheckpointLog()
    reader = ShardReader(
        stream, stream_name, empty_retry_wait=RETRY_WAIT, checkpoint_receiver=log
    )

    # act
    read = asyncio.create_task(reader.read())
    await asyncio.sleep(0.1)

    # assert
    assert not read.done()
    assert reader.state is ReaderState.RUNNING
    assert get_records.call_count > 1
    assert not log.checkpoints

    await reader.close()
    assert await asyncio.wait_for(read, timeout=2) is None


async def test_empty_retry_waits_between_fetches(
    stream: InMemoryStream, stream_name: str, mocker: MockerFixture
) -> None:
    """Test that empty fetches are spaced by the retry wait rather than busy-looping."""
    # arrange
    get_records = mocker.spy(stream, "get_records")
    reader = ShardReader(stream, stream_name, empty_retry_wait=0.2)

    # act
    read = asyncio.create_task(reader.read())
    await asyncio.sleep(0.1)
    await reader.close()

    # assert
    get_records.assert_called_once()
    assert await read is None


async def test_close_twice_is_idempotent(stream: InMemoryStream, stream_name: str) -> None:
    """Test that concurrent and repeated closes end the reader exactly once."""
    # arrange
    stream.put_records(stream_name, random_payloads(3))
    reader = ShardReader(stream, stream_name, empty_retry_wait=RETRY_WAIT)
    await reader.read()

    # act
    await asyncio.gather(reader.close(), reader.close())
    await reader.close()

    # assert
    assert reader.state is ReaderState.ENDED
    assert await reader.read() is None
    assert await reader.read() is None


async def test_no_data_after_close_completes(stream: InMemoryStream, stream_name: str) -> None:
    """Test that batches buffered but never read are dropped once close has completed."""
    # arrange
    stream.put_records(stream_name, random_payloads(10))
    log = CheckpointLog()
    reader = ShardReader(
        stream,
        stream_name,
        limit=1,
        max_buffered_batches=3,
        empty_retry_wait=RETRY_WAIT,
        checkpoint_receiver=log,
    )
    await reader.read()
    await asyncio.sleep(0.01)
    assert reader.buffered == 3

    # act
    await reader.close()

    # assert
    assert await reader.read() is None
    assert len(log.checkpoints) == 1
    assert reader.buffered == 0


async def test_close_waits_for_in_flight_fetch(held_stream: HeldService, stream_name: str) -> None:
    """Test that close only completes once the outstanding fetch has been processed."""
    # arrange
    payloads = random_payloads(2)
    held_stream.put_records(stream_name, payloads)
    log = CheckpointLog()
    reader = ShardReader(
        held_stream,
        stream_name,
        limit=10,
        empty_retry_wait=RETRY_WAIT,
        checkpoint_receiver=log,
    )
    read = asyncio.create_task(reader.read())
    await asyncio.wait_for(held_stream.fetch_started.wait(), timeout=2)
    assert reader.pending == 1

    # act
    close = asyncio.create_task(reader.close())
    await asyncio.sleep(0.05)

    # assert the reader is draining, not ended
    assert not close.done()
    assert reader.state is ReaderState.DRAINING

    # act
    held_stream.release.set()
    await asyncio.wait_for(close, timeout=2)

    # assert the in-flight result reached the waiting consumer before the end
    batch = await read
    assert batch is not None
    assert [record.data for record in batch] == payloads
    assert [checkpoint.sequence_number for checkpoint in log.checkpoints] == [batch.checkpoint]
    assert reader.pending == 0
    assert reader.state is ReaderState.ENDED
    assert held_stream.fetches == 1
    assert await reader.read() is None


async def test_close_before_first_read_issues_no_calls(
    stream: InMemoryStream, stream_name: str, mocker: MockerFixture
) -> None:
    """Test that closing an unused reader ends it without calling the service."""
    # arrange
    describe_stream = mocker.spy(stream, "describe_stream")
    reader = ShardReader(stream, stream_name)

    # act
    await reader.close()

    # assert
    assert await reader.read() is None
    describe_stream.assert_not_called()


async def test_nothing_is_fetched_before_first_read(
    stream: InMemoryStream, stream_name: str, mocker: MockerFixture
) -> None:
    """Test that pumping only starts when the consumer pulls."""
    # arrange
    stream.put_records(stream_name, random_payloads(5))
    describe_stream = mocker.spy(stream, "describe_stream")

    # act
    reader = ShardReader(stream, stream_name, empty_retry_wait=RETRY_WAIT)
    await asyncio.sleep(0.05)

    # assert
    describe_stream.assert_not_called()
    await reader.close()


async def test_fetches_at_most_buffer_bound_ahead(
    stream: InMemoryStream, stream_name: str, mocker: MockerFixture
) -> None:
    """Test that the reader stops pumping once the buffer is full."""
    # arrange
    stream.put_records(stream_name, random_payloads(10))
    get_records = mocker.spy(stream, "get_records")
    reader = ShardReader(
        stream, stream_name, limit=1, max_buffered_batches=2, empty_retry_wait=RETRY_WAIT
    )

    # act
    await reader.read()
    await asyncio.sleep(0.05)

    # assert one batch delivered and two buffered
    assert get_records.call_count == 3
    assert reader.buffered == 2

    # act
    await reader.read()
    await asyncio.sleep(0.05)

    # assert
    assert get_records.call_count == 4
    await reader.close()


@pytest.mark.parametrize(
    ("limit", "expected"),
    [(None, 1), (0, 1), (1, 1), (250, 250), (10000, 10000), (20000, 10000)],
)
async def test_limit_is_clamped(
    stream: InMemoryStream,
    stream_name: str,
    mocker: MockerFixture,
    limit: int | None,
    expected: int,
) -> None:
    """Test that fetches request the clamped limit."""
    # arrange
    stream.put_records(stream_name, random_payloads(1))
    get_records = mocker.spy(stream, "get_records")
    reader = ShardReader(stream, stream_name, limit=limit, empty_retry_wait=RETRY_WAIT)

    # act
    await reader.read()
    await reader.close()

    # assert
    assert reader.limit == expected
    assert get_records.call_args[0][-1] == expected


@pytest.mark.parametrize(
    "kwargs",
    [
        {"limit": -1},
        {"limit": 1.5},
        {"limit": True},
        {"empty_retry_wait": -0.1},
        {"max_buffered_batches": 0},
        {"shard_id": ""},
        {"position": "LATEST"},
    ],
)
def test_rejects_invalid_configuration(stream: InMemoryStream, kwargs: dict) -> None:
    """Test that invalid parameters fail at construction."""
    with pytest.raises(InvalidConfiguration):
        ShardReader(stream, "test-stream", **kwargs)


def test_rejects_missing_stream_name(stream: InMemoryStream) -> None:
    """Test that a stream name is required."""
    with pytest.raises(InvalidConfiguration, match="stream name is required"):
        ShardReader(stream, "")


async def test_closed_shard_ends_stream(stream: InMemoryStream, stream_name: str) -> None:
    """Test that a fully read closed shard ends the stream without a close request."""
    # arrange
    payloads = random_payloads(5)
    stream.put_records(stream_name, payloads)
    stream.close_shard(stream_name, "shardId-000000000000")
    reader = ShardReader(stream, stream_name, limit=2, empty_retry_wait=RETRY_WAIT)

    # act
    batches = [batch async for batch in reader]

    # assert
    assert [record.data for batch in batches for record in batch] == payloads
    assert [len(batch) for batch in batches] == [2, 2, 1]
    assert reader.state is ReaderState.ENDED
    await reader.close()


async def test_checkpoint_receiver_error_propagates(
    stream: InMemoryStream, stream_name: str, mocker: MockerFixture
) -> None:
    """Test that a failing checkpoint receiver raises from read."""
    # arrange
    stream.put_records(stream_name, random_payloads(2))
    receiver = mocker.AsyncMock()
    receiver.checkpoint.side_effect = RuntimeError("error while saving checkpoint")
    reader = ShardReader(
        stream, stream_name, empty_retry_wait=RETRY_WAIT, checkpoint_receiver=receiver
    )

    # act & assert
    with pytest.raises(RuntimeError, match="error while saving checkpoint"):
        await reader.read()
    await asyncio.wait_for(reader.close(), timeout=2)


async def test_context_manager_closes_reader(stream: InMemoryStream, stream_name: str) -> None:
    """Test that leaving the async with block closes the reader."""
    # arrange
    stream.put_records(stream_name, random_payloads(3))

    # act
    async with ShardReader(stream, stream_name, empty_retry_wait=RETRY_WAIT) as reader:
        assert await reader.read() is not None

    # assert
    assert reader.state is ReaderState.ENDED
    assert await reader.read() is None


async def test_readers_of_different_shards_are_independent(stream_name: str) -> None:
    """Test that two readers over one service do not interfere."""
    # arrange
    stream = InMemoryStream()
    stream.create_stream(stream_name, shard_count=2)
    stream.put_records(stream_name, [b"a1", b"a2"], shard_id="shardId-000000000000")
    stream.put_records(stream_name, [b"b1"], shard_id="shardId-000000000001")
    first = ShardReader(stream, stream_name, shard_id="shardId-000000000000", limit=10)
    second = ShardReader(stream, stream_name, shard_id="shardId-000000000001", limit=10)

    # act
    first_batch, second_batch = await asyncio.gather(first.read(), second.read())
    await first.close()

    # assert
    assert first_batch is not None and second_batch is not None
    assert [record.data for record in first_batch] == [b"a1", b"a2"]
    assert [record.data for record in second_batch] == [b"b1"]
    assert first.state is ReaderState.ENDED
    assert second.state is ReaderState.RUNNING
    await second.close()


class SlowCheckpointLog(CheckpointLog):
    """A CheckpointLog which takes a while to persist each checkpoint."""

    async def checkpoint(self, checkpoint: Checkpoint) -> None:
        await asyncio.sleep(0.02)
        await super().checkpoint(checkpoint)


async def test_nothing_delivered_after_close_with_active_consumer(
    stream: InMemoryStream, stream_name: str
) -> None:
    """Test that a consumer pulling in a loop gets no batch or checkpoint once close returned."""
    # arrange
    stream.put_records(stream_name, random_payloads(10))
    log = SlowCheckpointLog()
    reader = ShardReader(
        stream,
        stream_name,
        limit=1,
        max_buffered_batches=3,
        empty_retry_wait=RETRY_WAIT,
        checkpoint_receiver=log,
    )
    batches: list[RecordBatch] = []

    async def consume() -> None:
        async for batch in reader:
            batches.append(batch)

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0.03)

    # act
    await reader.close()
    delivered_at_close = (len(log.checkpoints), len(batches))
    await asyncio.wait_for(consumer, timeout=2)
    await asyncio.sleep(0.1)

    # assert
    assert (len(log.checkpoints), len(batches)) == delivered_at_close
    assert len(log.checkpoints) == len(batches)
    assert reader.state is ReaderState.ENDED
    assert reader.buffered == 0


async def test_close_leaves_no_background_task(stream: InMemoryStream, stream_name: str) -> None:
    """Test that the polling task has finished once the reader is closed."""
    # arrange
    stream.put_records(stream_name, random_payloads(3))

    # act
    async with ShardReader(stream, stream_name, empty_retry_wait=RETRY_WAIT) as reader:
        await reader.read()
        task = reader._task  # pylint: disable=protected-access
        assert task is not None and not task.done()

    # assert
    assert task.done()
