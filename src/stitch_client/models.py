"""
Data models for Stitch Client.

A ``Record`` is any user object that knows its destination table and key
fields. Records are wrapped into ``UpsertRequest`` values carrying delivery
metadata and projected into ``RawUpsertRequest`` envelopes right before they
are serialized.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Iterable, Literal, Protocol, Sequence, TypeVar, runtime_checkable

from pydantic import BaseModel, Field, field_serializer

from .utils import coerce_payload

ACTION_UPSERT = "upsert"

U32_MAX = 2**32 - 1


@runtime_checkable
class Record(Protocol):
    """
    Capabilities a record needs to be sent to Stitch.

    Example:
        @dataclass
        class User:
            id: int
            name: str

            def table_name(self) -> str:
                return "users"

            def key_names(self) -> list[str]:
                return ["id"]
    """

    def table_name(self) -> str: ...

    def key_names(self) -> Sequence[str]: ...


T = TypeVar("T", bound=Record)


@dataclass(frozen=True)
class UpsertRequest(Generic[T]):
    """
    A record plus the metadata Stitch needs to upsert it.

    ``sequence`` orders writes to the same key; it should never decrease for a
    given producer. Current time in milliseconds is the usual choice.
    """

    client_id: int
    sequence: int
    data: T

    @property
    def action(self) -> str:
        return ACTION_UPSERT

    def table_name(self) -> str:
        return self.data.table_name()

    def key_names(self) -> list[str]:
        return list(self.data.key_names())

    def into_raw(self) -> "RawUpsertRequest":
        return build_envelope(self)


class RawUpsertRequest(BaseModel):
    """Wire envelope for a single upsert, serialized as one JSON array element."""

    client_id: int = Field(ge=0, le=U32_MAX)
    sequence: int = Field(ge=0)
    table_name: str
    action: Literal["upsert"] = ACTION_UPSERT
    key_names: list[str]
    data: Any

    @field_serializer("data")
    def _serialize_data(self, data: Any) -> Any:
        return coerce_payload(data)


def build_envelope(request: UpsertRequest) -> RawUpsertRequest:
    """Project an ``UpsertRequest`` into its wire envelope.

    Table and key names are read from the record now, not earlier.
    """
    return RawUpsertRequest(
        client_id=request.client_id,
        sequence=request.sequence,
        table_name=request.table_name(),
        action=ACTION_UPSERT,
        key_names=request.key_names(),
        data=request.data,
    )


def stamp_batch(
    records: Iterable[Record | UpsertRequest], client_id: int, sequence: int
) -> list[UpsertRequest]:
    """Wrap bare records into ``UpsertRequest``s; existing requests pass through."""
    out: list[UpsertRequest] = []
    for r in records:
        if isinstance(r, UpsertRequest):
            out.append(r)
        else:
            out.append(UpsertRequest(client_id=client_id, sequence=sequence, data=r))
    return out
