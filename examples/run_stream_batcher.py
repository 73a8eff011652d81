"""
Demo: stream records into Stitch through a bounded queue.

Reads STITCH_CLIENT_ID / STITCH_AUTH_TOKEN (or .env). A producer pushes users
into the queue; the batcher drains it in batches and keeps going when a
batch is rejected.
"""

import asyncio
from dataclasses import dataclass

from loguru import logger

from stitch_client import BoundedQueue, StitchClient, get_settings


@dataclass
class User:
    id: int
    email: str

    def table_name(self) -> str:
        return "users"

    def key_names(self) -> list[str]:
        return ["id"]


async def on_bp_high():
    logger.warning("Backpressure HIGH: producer is outrunning the import API")


async def on_bp_low():
    logger.info("Backpressure recovered")


async def produce(queue: BoundedQueue, n: int) -> None:
    for i in range(n):
        await queue.put(User(id=i, email=f"user{i}@example.com"))
    queue.close()


async def main():
    settings = get_settings()
    queue = BoundedQueue(settings.queue_capacity, on_high=on_bp_high, on_low=on_bp_low)

    async with StitchClient.from_settings(settings) as stitch:
        await stitch.get_status()
        logger.info(f"Stitch is up; streaming as client {stitch.client_id}")

        batcher = stitch.start_stream_batcher(queue, settings.batch_size)
        await produce(queue, 5_000)
        summary = await batcher

    logger.info(
        f"Done: {summary.batches_sent} batches sent, {summary.batches_failed} failed, "
        f"{summary.records_sent} records delivered"
    )


if __name__ == "__main__":
    asyncio.run(main())
