"""
Stitch Client Library

Async client for the Stitch import API: single batch validate/push calls and
a stream batcher that drains a bounded queue of records into size-bounded
batches.

Usage:
    from stitch_client import StitchClient, BoundedQueue

    async with StitchClient(client_id, "token") as stitch:
        await stitch.upsert_batch([stitch.upsert_record(user)])

        queue = BoundedQueue(capacity=100)
        task = stitch.start_stream_batcher(queue, batch_size=20)
        for user in users:
            await queue.put(user)   # suspends while the queue is full
        queue.close()
        summary = await task
"""

from .client import StitchClient
from .config import StitchSettings, get_settings
from .dispatch import BatchDispatcher, Endpoint
from .errors import (
    ConstructionError,
    DispatchError,
    SerializationError,
    StatusError,
    StitchError,
    StreamChunkingError,
    TransportError,
)
from .models import RawUpsertRequest, Record, UpsertRequest, build_envelope
from .queue import BoundedQueue, QueueClosed, QueueFullError
from .stream import BatcherState, StreamBatcher, StreamSummary
from .transport import BASE_URL, Transport

__version__ = "1.0.0"
__all__ = [
    "StitchClient",
    "StitchSettings",
    "get_settings",
    "Transport",
    "BASE_URL",
    "BatchDispatcher",
    "Endpoint",
    "Record",
    "UpsertRequest",
    "RawUpsertRequest",
    "build_envelope",
    "BoundedQueue",
    "QueueClosed",
    "QueueFullError",
    "StreamBatcher",
    "BatcherState",
    "StreamSummary",
    "StitchError",
    "ConstructionError",
    "SerializationError",
    "DispatchError",
    "TransportError",
    "StatusError",
    "StreamChunkingError",
]
