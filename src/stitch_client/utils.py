"""
Utility functions for Stitch Client.

Includes the sequence time source and payload coercion for wire encoding.
"""

import dataclasses
import time
from collections.abc import Mapping
from typing import Any, Callable


def unix_timestamp_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


class SequenceClock:
    """
    Non-decreasing millisecond sequence source.

    Stitch orders upserts for the same key by ``sequence``. Wall-clock time is
    used, but a clock step backwards never produces a smaller value than one
    already handed out.
    """

    def __init__(self, source: Callable[[], int] = unix_timestamp_ms):
        self._source = source
        self._last = 0

    @property
    def last(self) -> int:
        return self._last

    def next(self) -> int:
        now = self._source()
        if now > self._last:
            self._last = now
        return self._last


def coerce_payload(obj: Any) -> Any:
    """Turn a record payload into plain JSON-friendly python data."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, Mapping):
        return dict(obj)
    if isinstance(obj, (str, int, float, bool, list, tuple)) or obj is None:
        return obj
    if hasattr(obj, "__dict__"):
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
    return obj
