"""
Stream batcher: drains an async record source into fixed-size batches.

States:
    ACCUMULATING  records are appended to the buffer
    FLUSHING      a full batch is being dispatched
    DRAINING      the source ended; the final partial batch is being dispatched
    DONE          terminal

Failure policy: a batch that fails to dispatch (transport or status error) is
logged and counted, and the stream keeps going. A failing *source* means the
pipeline itself is broken, so that error is raised as ``StreamChunkingError``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import AsyncIterable, Generic, List, Optional, TypeVar

from loguru import logger

from .dispatch import BatchDispatcher, Endpoint
from .errors import DispatchError, StreamChunkingError
from .models import UpsertRequest, stamp_batch
from .utils import SequenceClock

T = TypeVar("T")


class BatcherState(str, Enum):
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class StreamSummary:
    """Counters for one stream batcher run."""

    batches_sent: int = 0
    batches_failed: int = 0
    records_sent: int = 0
    records_failed: int = 0

    @property
    def batches(self) -> int:
        return self.batches_sent + self.batches_failed

    @property
    def records(self) -> int:
        return self.records_sent + self.records_failed


class StreamBatcher(Generic[T]):
    """
    Consume ``source`` and dispatch every ``batch_size`` records as one request.

    Batches go out one at a time in arrival order; the next record is not
    pulled until the current dispatch resolves, so a slow endpoint throttles a
    producer writing into a ``BoundedQueue``.

    Usage:

        queue = BoundedQueue[UpsertRequest[User]](capacity=100)
        batcher = StreamBatcher(BatchDispatcher(transport), queue, batch_size=20)
        summary = await batcher.run()   # returns once queue.close() is drained
    """

    def __init__(
        self,
        dispatcher: BatchDispatcher,
        source: AsyncIterable[T],
        batch_size: int,
        *,
        client_id: Optional[int] = None,
        clock: Optional[SequenceClock] = None,
        endpoint: Endpoint = Endpoint.PUSH,
    ):
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise ValueError(f"batch_size must be a positive int, got {batch_size!r}")

        self._dispatcher = dispatcher
        self._source = source
        self._batch_size = batch_size
        self._client_id = client_id if client_id is not None else dispatcher.transport.client_id
        self._clock = clock or SequenceClock()
        self._endpoint = Endpoint(endpoint)

        self._state = BatcherState.ACCUMULATING
        self._started = False
        self._last_sequence = 0
        self._summary = StreamSummary()

    @property
    def state(self) -> BatcherState:
        return self._state

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def summary(self) -> StreamSummary:
        return self._summary

    async def run(self) -> StreamSummary:
        if self._started:
            raise RuntimeError("StreamBatcher.run() can only be called once")
        self._started = True

        buffer: List[T] = []
        records = self._source.__aiter__()
        while True:
            try:
                record = await records.__anext__()
            except StopAsyncIteration:
                break
            except Exception as e:
                self._state = BatcherState.DONE
                if buffer:
                    logger.error(f"Record stream failed; {len(buffer)} buffered records not sent")
                raise StreamChunkingError(f"could not chunk record stream: {e}") from e

            buffer.append(record)
            if len(buffer) >= self._batch_size:
                self._state = BatcherState.FLUSHING
                await self._flush(buffer)
                buffer = []
                self._state = BatcherState.ACCUMULATING

        if buffer:
            self._state = BatcherState.DRAINING
            await self._flush(buffer)
        self._state = BatcherState.DONE

        s = self._summary
        logger.info(
            f"Record stream finished: {s.batches_sent} batches sent, {s.batches_failed} failed "
            f"({s.records_sent}/{s.records} records delivered)"
        )
        return s

    async def _flush(self, records: List[T]) -> None:
        stamped = stamp_batch(records, self._client_id, self._clock.next())
        batch = [self._not_before_last(r) for r in stamped]
        n = len(batch)
        logger.info(f"Persisting batch of {n} records")
        try:
            await self._dispatcher.dispatch(batch, self._endpoint)
        except DispatchError as e:
            self._summary.batches_failed += 1
            self._summary.records_failed += n
            logger.error(f"Batch of {n} records failed, continuing: {type(e).__name__}: {e}")
            return
        self._summary.batches_sent += 1
        self._summary.records_sent += n

    def _not_before_last(self, request: UpsertRequest) -> UpsertRequest:
        # sequences never decrease within a run; older requests are re-stamped
        if request.sequence < self._last_sequence:
            request = replace(request, sequence=self._last_sequence)
        self._last_sequence = request.sequence
        return request
