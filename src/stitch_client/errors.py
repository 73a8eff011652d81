"""
Custom exceptions for Stitch Client.

Structured error taxonomy for the import API: construction, transport,
status and stream failures share a single base class.
"""

from __future__ import annotations

import httpx


class StitchError(Exception):
    """Base error for Stitch client."""

    pass


class ConstructionError(StitchError):
    """Client could not be built (TLS context, credentials, client id)."""

    pass


class SerializationError(StitchError):
    """A batch could not be encoded as JSON. Not retried."""

    pass


class DispatchError(StitchError):
    """A single request to the import API failed.

    ``retryable`` is a hint for callers that add their own retry policy; the
    client itself never retries.
    """

    retryable: bool = False


class TransportError(DispatchError):
    """Connection, TLS or timeout failure before a response was received."""

    retryable = True

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class StatusError(DispatchError):
    """Non-2xx response; carries the canonical reason phrase."""

    def __init__(self, status_code: int, body: bytes = b""):
        self.status_code = status_code
        self.reason = httpx.codes.get_reason_phrase(status_code) or "Unknown Status"
        self.body = body
        super().__init__(self.reason)

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code == 429 or self.status_code >= 500

    def __repr__(self) -> str:
        return f"StatusError({self.status_code}, {self.reason!r})"


class StreamChunkingError(StitchError):
    """The record source failed; the stream batcher cannot continue."""

    pass


def map_http_error(e: Exception) -> StitchError:
    if isinstance(e, StitchError):
        return e
    if isinstance(e, httpx.HTTPStatusError):
        return StatusError(e.response.status_code, e.response.content)
    if isinstance(e, httpx.RequestError):
        return TransportError(f"{type(e).__name__}: {e}", cause=e)
    return StitchError(str(e))
