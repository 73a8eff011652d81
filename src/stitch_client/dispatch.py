"""
Batch dispatch to the Stitch import API.

One dispatch is one HTTP attempt: envelopes are built, the batch is encoded
as a JSON array and POSTed to ``/push`` or ``/validate``. The response is
classified into a body (2xx) or a ``DispatchError``. Nothing is retried here.
"""

from __future__ import annotations

import json
from enum import Enum
from time import monotonic
from typing import Sequence

import httpx
from loguru import logger
from pydantic_core import PydanticSerializationError

from .errors import SerializationError, StatusError, map_http_error
from .metrics import DISPATCH_LATENCY_MS, DISPATCH_TOTAL, RECORDS_TOTAL
from .models import UpsertRequest, build_envelope
from .transport import Transport


class Endpoint(str, Enum):
    PUSH = "push"
    VALIDATE = "validate"


def check_status(response: httpx.Response) -> httpx.Response:
    """Raise ``StatusError`` for anything outside 2xx."""
    if not response.is_success:
        raise StatusError(response.status_code, response.content)
    return response


class BatchDispatcher:
    def __init__(self, transport: Transport):
        self._transport = transport

    @property
    def transport(self) -> Transport:
        return self._transport

    @staticmethod
    def serialize(batch: Sequence[UpsertRequest]) -> bytes:
        """Encode a batch as the JSON array of wire envelopes, preserving order."""
        try:
            envelopes = [build_envelope(r).model_dump(mode="json") for r in batch]
            return json.dumps(envelopes, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError, PydanticSerializationError) as e:
            raise SerializationError(f"batch is not JSON serializable: {e}") from e

    async def dispatch(
        self, batch: Sequence[UpsertRequest], endpoint: Endpoint = Endpoint.PUSH
    ) -> bytes:
        """POST one batch; return the raw response body on 2xx."""
        endpoint = Endpoint(endpoint)
        body = self.serialize(batch)
        n = len(batch)
        logger.debug(f"POST /{endpoint.value}: {n} records, {len(body)} bytes")

        t0 = monotonic()
        try:
            response = await self._transport.post_json(endpoint.value, body)
            check_status(response)
        except StatusError:
            self._record_failure(endpoint, n)
            raise
        except httpx.HTTPError as e:
            self._record_failure(endpoint, n)
            raise map_http_error(e) from e
        finally:
            DISPATCH_LATENCY_MS.labels(endpoint.value).observe((monotonic() - t0) * 1000.0)

        DISPATCH_TOTAL.labels(endpoint.value, "success").inc()
        RECORDS_TOTAL.labels(endpoint.value, "success").inc(n)
        logger.debug(f"POST /{endpoint.value} -> {response.status_code}")
        return response.content

    @staticmethod
    def _record_failure(endpoint: Endpoint, n: int) -> None:
        DISPATCH_TOTAL.labels(endpoint.value, "error").inc()
        RECORDS_TOTAL.labels(endpoint.value, "error").inc(n)
