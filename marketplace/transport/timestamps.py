"""Timestamp helpers for call envelopes and the ledger clock."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], int]


class TimestampError(ValueError):
    """Raised when timestamps are malformed or outside the permitted skew."""


def system_clock() -> int:
    """Ledger clock: whole UNIX seconds."""
    return int(time.time())


def format_timestamp(dt: datetime | None = None) -> str:
    value = (dt or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    if not value:
        raise TimestampError("timestamp missing")
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
    except ValueError as exc:
        raise TimestampError("timestamp is not ISO-8601 compatible") from exc
    if dt.tzinfo is None:
        raise TimestampError("timestamp must include timezone information")
    return dt.astimezone(timezone.utc)


def assert_within_skew(timestamp: str, *, max_skew_ms: int, now: datetime | None = None) -> datetime:
    """Validate an envelope timestamp and ensure it is within the configured skew."""
    dt = parse_timestamp(timestamp)
    ref = now or datetime.now(timezone.utc)
    delta_ms = abs((ref - dt).total_seconds() * 1000)
    if delta_ms > max_skew_ms:
        raise TimestampError(
            f"timestamp skew {delta_ms:.1f}ms exceeds max {max_skew_ms}ms"
        )
    return dt
