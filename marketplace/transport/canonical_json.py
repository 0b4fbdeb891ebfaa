"""Helpers for canonical JSON serialization used for signing + hashing."""

from __future__ import annotations

import hashlib
from typing import Any, Union

import orjson

_ORJSON_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_STRICT_INTEGER | orjson.OPT_NAIVE_UTC


JsonType = Union[str, int, float, bool, None, list["JsonType"], dict[str, "JsonType"]]


def canonical_dumps(payload: Any) -> bytes:
    """Return canonical JSON bytes with sorted keys and stable formatting."""
    return orjson.dumps(payload, option=_ORJSON_OPTIONS)


def canonical_digest(payload: Any) -> bytes:
    """Return the raw SHA-256 digest of the canonical JSON representation."""
    return hashlib.sha256(canonical_dumps(payload)).digest()


def canonical_hash(payload: Any) -> str:
    """Return a 0x-prefixed SHA-256 hex digest for the canonical JSON representation."""
    return "0x" + canonical_digest(payload).hex()
