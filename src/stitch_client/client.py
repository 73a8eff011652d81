from __future__ import annotations

import asyncio
from typing import AsyncIterable, Optional, Sequence, TypeVar, Union

import httpx
from loguru import logger

from .config import StitchSettings, get_settings
from .dispatch import BatchDispatcher, Endpoint, check_status
from .errors import map_http_error
from .models import Record, UpsertRequest, stamp_batch
from .stream import StreamBatcher, StreamSummary
from .transport import BASE_URL, DEFAULT_POOL_MAX, DEFAULT_TIMEOUT, Transport
from .utils import SequenceClock

T = TypeVar("T", bound=Record)

Batch = Sequence[Union[UpsertRequest[T], T]]


class StitchClient:
    """
    Async client for the Stitch import API.

    Pass the same instance to every coroutine that needs it; they share one
    transport and sequence clock. Use it only on the event loop that created
    it (one client per thread or loop).

    Usage:
        async with StitchClient(client_id, token) as stitch:
            await stitch.get_status()
            await stitch.validate_batch([stitch.upsert_record(user)])

            queue = BoundedQueue[UpsertRequest[User]](capacity=100)
            task = stitch.start_stream_batcher(queue, batch_size=20)
            await queue.put(stitch.upsert_record(user))
            queue.close()
            await task
    """

    def __init__(
        self,
        client_id: int,
        auth_token: str,
        *,
        base_url: str = BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        pool_max: int = DEFAULT_POOL_MAX,
        ca_bundle: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._transport = Transport.create(
            client_id,
            auth_token,
            base_url=base_url,
            timeout=timeout,
            pool_max=pool_max,
            ca_bundle=ca_bundle,
            transport=transport,
        )
        self._dispatcher = BatchDispatcher(self._transport)
        self._clock = SequenceClock()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[StitchSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "StitchClient":
        s = settings or get_settings()
        return cls(
            s.client_id,
            s.auth_token,
            base_url=s.base_url,
            timeout=s.timeout,
            pool_max=s.pool_max,
            ca_bundle=s.ca_bundle,
            transport=transport,
        )

    async def __aenter__(self) -> "StitchClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._transport.aclose()

    @property
    def client_id(self) -> int:
        return self._transport.client_id

    @property
    def transport(self) -> Transport:
        return self._transport

    # ---------- status ----------

    async def get_status(self) -> httpx.Response:
        """Check the import API; raises unless it answers 2xx."""
        try:
            response = await self._transport.get("status")
        except httpx.HTTPError as e:
            raise map_http_error(e) from e
        logger.debug(f"GET /status -> {response.status_code}")
        return check_status(response)

    # ---------- records / batches ----------

    def upsert_record(self, data: T) -> UpsertRequest[T]:
        """Wrap a record for sending, stamped with the next sequence value."""
        return UpsertRequest(client_id=self.client_id, sequence=self._clock.next(), data=data)

    async def validate_batch(self, batch: Batch) -> bytes:
        """Ask Stitch to validate a batch without persisting it. Returns the response body."""
        return await self._dispatcher.dispatch(self._stamp(batch), Endpoint.VALIDATE)

    async def upsert_batch(self, batch: Batch) -> bytes:
        """Push a batch. Returns the response body."""
        return await self._dispatcher.dispatch(self._stamp(batch), Endpoint.PUSH)

    # ---------- streaming ----------

    def stream_batcher(
        self,
        source: AsyncIterable,
        batch_size: int,
        *,
        endpoint: Endpoint = Endpoint.PUSH,
    ) -> StreamBatcher:
        return StreamBatcher(
            self._dispatcher,
            source,
            batch_size,
            client_id=self.client_id,
            clock=self._clock,
            endpoint=endpoint,
        )

    async def run_stream_batcher(
        self,
        source: AsyncIterable,
        batch_size: int,
        *,
        endpoint: Endpoint = Endpoint.PUSH,
    ) -> StreamSummary:
        """
        Chunk ``source`` into batches of ``batch_size`` and push each one.

        Failed batches are logged and skipped; returns once the source is
        exhausted (e.g. its ``BoundedQueue`` was closed and drained).
        """
        return await self.stream_batcher(source, batch_size, endpoint=endpoint).run()

    def start_stream_batcher(
        self,
        source: AsyncIterable,
        batch_size: int,
        *,
        endpoint: Endpoint = Endpoint.PUSH,
    ) -> "asyncio.Task[StreamSummary]":
        """Like ``run_stream_batcher`` but scheduled as a task on the running loop."""
        batcher = self.stream_batcher(source, batch_size, endpoint=endpoint)
        return asyncio.get_running_loop().create_task(batcher.run())

    # ---------- internals ----------

    def _stamp(self, batch: Batch) -> list[UpsertRequest]:
        return stamp_batch(batch, self.client_id, self._clock.next())
