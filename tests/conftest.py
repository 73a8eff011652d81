"""
Pytest configuration and fixtures for stitch-client.

HTTP is faked with ``httpx.MockTransport`` injected into the client transport.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Optional

import httpx
import pytest
from loguru import logger

from stitch_client import StitchClient

VALID_BODY = b'{"status":"OK","message":"Batch is valid!"}'


@dataclass
class Inner:
    description: str


@dataclass
class UserRecord:
    """Record used across tests (duck-typed ``Record``)."""

    id: int
    name: str = ""
    inner: Optional[Inner] = None

    def table_name(self) -> str:
        return "test_integration"

    def key_names(self) -> list[str]:
        return ["id", "name"]


def make_records(n: int) -> list[UserRecord]:
    return [
        UserRecord(id=i, name=f"name_{i}", inner=Inner(description=f"description_{i}"))
        for i in range(1, n + 1)
    ]


@dataclass
class FakeStitch:
    """In-memory stand-in for the import API.

    ``statuses[i]`` is the status for the i-th request (default 200),
    ``fail_calls`` holds request indexes that raise ``httpx.ConnectError``,
    and ``gate`` (when set) blocks every request until it is released.
    """

    statuses: list[int] = field(default_factory=list)
    fail_calls: set[int] = field(default_factory=set)
    body: bytes = VALID_BODY
    gate: Optional[asyncio.Event] = None
    requests: list[httpx.Request] = field(default_factory=list)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        idx = len(self.requests)
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if idx in self.fail_calls:
            raise httpx.ConnectError("connection refused", request=request)
        status = self.statuses[idx] if idx < len(self.statuses) else 200
        return httpx.Response(status, content=self.body if 200 <= status < 300 else b"")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def posts(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def batches(self) -> list[list[dict]]:
        return [json.loads(r.content) for r in self.posts]

    def batch_ids(self) -> list[list[int]]:
        return [[env["data"]["id"] for env in batch] for batch in self.batches()]


@pytest.fixture
def fake():
    return FakeStitch()


@pytest.fixture
def make_client():
    def _make(fake: FakeStitch, client_id: int = 7) -> StitchClient:
        return StitchClient(client_id, "test-token", transport=fake.transport)

    return _make


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during a test."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
