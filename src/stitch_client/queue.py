from __future__ import annotations

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Generic, Optional, TypeVar

from loguru import logger

T = TypeVar("T")
BackpressureCallback = Callable[[], Awaitable[None]]


class QueueFullError(Exception):
    """Raised by ``put_nowait`` when the queue is at capacity."""


class QueueClosed(Exception):
    """Raised when putting into a closed queue, or getting from a closed, drained one."""


class BoundedQueue(Generic[T]):
    """
    Bounded FIFO between a record producer and the stream batcher.

    ``put`` suspends while the queue is full. ``close`` is the end-of-input
    signal: items already queued are still delivered, then ``get`` raises
    ``QueueClosed`` and async iteration stops.
    """

    def __init__(
        self,
        capacity: int,
        high_watermark: int | None = None,
        low_watermark: int | None = None,
        *,
        on_high: Optional[BackpressureCallback] = None,
        on_low: Optional[BackpressureCallback] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._q: asyncio.Queue[T] = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()

        self._high_wm = (
            high_watermark if high_watermark is not None else max(1, int(0.8 * capacity))
        )
        self._low_wm = low_watermark if low_watermark is not None else int(0.5 * capacity)
        self._on_high = on_high
        self._on_low = on_low
        self._high_fired = False  # avoid duplicate signals

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._q.qsize()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def full(self) -> bool:
        return self._q.full()

    async def put(self, item: T) -> None:
        """Enqueue, waiting for room; emits the high watermark signal once."""
        while True:
            if self.closed:
                raise QueueClosed("queue is closed")
            if not self._q.full():
                self._q.put_nowait(item)
                break
            if await self._until_closed(self._q.put(item)):
                break
        await self._maybe_signal_high()

    def put_nowait(self, item: T) -> None:
        if self.closed:
            raise QueueClosed("queue is closed")
        try:
            self._q.put_nowait(item)
        except asyncio.QueueFull:
            raise QueueFullError("BoundedQueue is full") from None

    async def get(self) -> T:
        """Dequeue, waiting for an item; emits the low watermark signal when recovering."""
        item = await self._take()
        await self._maybe_signal_low()
        return item

    def close(self) -> None:
        """Stop accepting items and wake every waiter. Safe to call more than once."""
        self._closed.set()

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[T]:
        while True:
            try:
                item = await self.get()
            except QueueClosed:
                return
            yield item

    # --------------- internals

    async def _take(self) -> T:
        while self._q.empty():
            if self.closed:
                raise QueueClosed("queue is closed and drained")
            getter = asyncio.ensure_future(self._q.get())
            if await self._until_closed(getter):
                return getter.result()
        return self._q.get_nowait()

    async def _until_closed(self, op: Awaitable) -> bool:
        """Await ``op`` unless the queue closes first; True if ``op`` completed."""
        task = asyncio.ensure_future(op)
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({task, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            if not task.done():
                task.cancel()
        return task.done() and not task.cancelled()

    async def _maybe_signal_high(self) -> None:
        if not self._high_fired and self.size >= self._high_wm:
            self._high_fired = True
            logger.warning(f"Input queue at high watermark ({self.size}/{self._capacity})")
            if self._on_high:
                await self._on_high()

    async def _maybe_signal_low(self) -> None:
        if self._high_fired and self.size <= self._low_wm:
            self._high_fired = False
            if self._on_low:
                await self._on_low()
