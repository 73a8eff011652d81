"""
Unit tests for StreamBatcher.

Failure policy under test: a batch rejected by the API (status or transport
error) is logged and skipped, and the stream keeps dispatching later batches.
Only a broken record source or an unserializable batch stops the run.
"""

import asyncio
import math

import pytest

from conftest import FakeStitch, UserRecord, make_records
from stitch_client.dispatch import BatchDispatcher, Endpoint
from stitch_client.errors import SerializationError, StreamChunkingError
from stitch_client.models import UpsertRequest
from stitch_client.queue import BoundedQueue
from stitch_client.stream import BatcherState, StreamBatcher
from stitch_client.transport import Transport
from stitch_client.utils import SequenceClock


def _dispatcher(fake: FakeStitch) -> BatchDispatcher:
    return BatchDispatcher(Transport.create(21, "secret", transport=fake.transport))


def _closed_queue(items, capacity: int | None = None) -> BoundedQueue:
    q = BoundedQueue(capacity=capacity or max(1, len(items)))
    for item in items:
        q.put_nowait(item)
    q.close()
    return q


@pytest.mark.parametrize("batch_size", [0, -1, 1.5, True])
def test_invalid_batch_size_is_rejected(batch_size):
    with pytest.raises(ValueError):
        StreamBatcher(_dispatcher(FakeStitch()), _closed_queue([]), batch_size)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "m, n",
    [(0, 1), (1, 1), (3, 2), (7, 3), (10, 5), (11, 5), (4, 10), (25, 1)],
)
async def test_batch_count_and_order(m, n):
    fake = FakeStitch()
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue(make_records(m)), n)

    summary = await batcher.run()

    ids = fake.batch_ids()
    assert len(ids) == math.ceil(m / n)
    assert [i for batch in ids for i in batch] == list(range(1, m + 1))
    assert all(len(batch) <= n for batch in ids)
    assert summary.batches_sent == len(ids)
    assert summary.records_sent == m
    assert batcher.state is BatcherState.DONE


@pytest.mark.asyncio
async def test_three_records_batch_of_two():
    fake = FakeStitch()
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue(make_records(3)), 2)

    await batcher.run()

    assert fake.batch_ids() == [[1, 2], [3]]


@pytest.mark.asyncio
async def test_empty_closed_queue_completes_without_dispatch():
    fake = FakeStitch()
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue([]), 3)

    summary = await batcher.run()

    assert fake.requests == []
    assert summary.batches == 0
    assert batcher.state is BatcherState.DONE


@pytest.mark.asyncio
async def test_rejected_batch_does_not_stop_stream(log_messages):
    fake = FakeStitch(statuses=[503])
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue(make_records(4)), 2)

    summary = await batcher.run()

    assert fake.batch_ids() == [[1, 2], [3, 4]]
    assert summary.batches_failed == 1
    assert summary.batches_sent == 1
    assert summary.records_failed == 2
    assert any("Batch of 2 records failed" in m and "Service Unavailable" in m for m in log_messages)
    assert batcher.state is BatcherState.DONE


@pytest.mark.asyncio
async def test_transport_failure_is_recovered():
    fake = FakeStitch(fail_calls={1})
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue(make_records(5)), 2)

    summary = await batcher.run()

    assert len(fake.posts) == 3
    assert (summary.batches_sent, summary.batches_failed) == (2, 1)


@pytest.mark.asyncio
async def test_broken_source_raises_chunking_error():
    fake = FakeStitch()

    async def source():
        for r in make_records(3):
            yield r
        raise ConnectionResetError("producer went away")

    batcher = StreamBatcher(_dispatcher(fake), source(), 2)

    with pytest.raises(StreamChunkingError):
        await batcher.run()

    # first full batch went out, the buffered third record did not
    assert fake.batch_ids() == [[1, 2]]
    assert batcher.state is BatcherState.DONE


@pytest.mark.asyncio
async def test_serialization_error_is_not_recovered():
    class NoDict:
        __slots__ = ()

        def table_name(self):
            return "t"

        def key_names(self):
            return ["id"]

    fake = FakeStitch()
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue([NoDict()]), 1)

    with pytest.raises(SerializationError):
        await batcher.run()
    assert fake.requests == []


@pytest.mark.asyncio
async def test_bare_records_get_non_decreasing_sequence_per_batch():
    readings = iter([5000, 4000, 6000])
    fake = FakeStitch()
    batcher = StreamBatcher(
        _dispatcher(fake),
        _closed_queue(make_records(5)),
        2,
        clock=SequenceClock(source=lambda: next(readings)),
    )

    await batcher.run()

    sequences = [[env["sequence"] for env in batch] for batch in fake.batches()]
    assert sequences == [[5000, 5000], [5000, 5000], [6000]]
    assert all(env["client_id"] == 21 for batch in fake.batches() for env in batch)


@pytest.mark.asyncio
async def test_prebuilt_requests_keep_their_metadata():
    fake = FakeStitch()
    items = [UpsertRequest(client_id=3, sequence=10 + i, data=UserRecord(id=i)) for i in range(3)]
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue(items), 3)

    await batcher.run()

    (batch,) = fake.batches()
    assert [(env["client_id"], env["sequence"]) for env in batch] == [(3, 10), (3, 11), (3, 12)]


@pytest.mark.asyncio
async def test_mixed_items_never_send_a_lower_sequence():
    clock = SequenceClock(source=iter(range(1000, 100000, 1000)).__next__)
    r1, r2, r3 = make_records(3)
    early = UpsertRequest(client_id=21, sequence=clock.next(), data=r3)
    fake = FakeStitch()
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue([r1, r2, early]), 2, clock=clock)

    await batcher.run()

    assert fake.batch_ids() == [[1, 2], [3]]
    sequences = [env["sequence"] for batch in fake.batches() for env in batch]
    assert sequences == [2000, 2000, 2000]


@pytest.mark.asyncio
async def test_out_of_order_prebuilt_requests_are_raised_to_last_sent():
    fake = FakeStitch()
    items = [
        UpsertRequest(client_id=21, sequence=50, data=UserRecord(id=1)),
        UpsertRequest(client_id=21, sequence=40, data=UserRecord(id=2)),
        UpsertRequest(client_id=21, sequence=90, data=UserRecord(id=3)),
    ]
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue(items), 2)

    await batcher.run()

    assert [[env["sequence"] for env in batch] for batch in fake.batches()] == [[50, 50], [90]]


@pytest.mark.asyncio
async def test_validate_endpoint_can_be_streamed():
    fake = FakeStitch()
    batcher = StreamBatcher(
        _dispatcher(fake), _closed_queue(make_records(2)), 2, endpoint=Endpoint.VALIDATE
    )

    await batcher.run()

    assert fake.posts[0].url.path.endswith("/validate")


@pytest.mark.asyncio
async def test_states_during_flush_and_drain():
    seen = []
    fake = FakeStitch()
    batcher_ref = {}

    original = fake.handler

    async def handler(request):
        seen.append(batcher_ref["b"].state)
        return await original(request)

    fake.handler = handler  # type: ignore[method-assign]
    batcher = StreamBatcher(_dispatcher(fake), _closed_queue(make_records(3)), 2)
    batcher_ref["b"] = batcher
    assert batcher.state is BatcherState.ACCUMULATING

    await batcher.run()

    assert seen == [BatcherState.FLUSHING, BatcherState.DRAINING]


@pytest.mark.asyncio
async def test_slow_endpoint_applies_backpressure_to_producer():
    gate = asyncio.Event()
    fake = FakeStitch(gate=gate)
    q = BoundedQueue(capacity=2)
    batcher = StreamBatcher(_dispatcher(fake), q, 1)

    async def produce():
        for r in make_records(5):
            await q.put(r)
        q.close()

    run = asyncio.create_task(batcher.run())
    producer = asyncio.create_task(produce())
    await asyncio.sleep(0.05)

    # one record in flight, two queued, producer parked on the fourth
    assert len(fake.requests) == 1
    assert q.size == 2
    assert not producer.done()

    gate.set()
    await asyncio.wait_for(producer, timeout=1)
    summary = await asyncio.wait_for(run, timeout=1)

    assert fake.batch_ids() == [[1], [2], [3], [4], [5]]
    assert summary.records_sent == 5


@pytest.mark.asyncio
async def test_run_only_once():
    batcher = StreamBatcher(_dispatcher(FakeStitch()), _closed_queue([]), 1)
    await batcher.run()
    with pytest.raises(RuntimeError):
        await batcher.run()
