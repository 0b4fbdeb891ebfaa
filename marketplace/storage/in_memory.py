"""In-memory storage backend for ledger state and committed events."""

from __future__ import annotations

import asyncio
from bisect import bisect_right
from copy import deepcopy
from typing import Any, Mapping


class InMemoryStorage:
    def __init__(self) -> None:
        self._state: dict[str, dict[str, Any]] = {}
        self._events: list[dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def get(self, namespace: str, key: str) -> Any | None:
        async with self._lock:
            value = self._state.get(namespace, {}).get(key)
            return deepcopy(value)

    async def scan(self, namespace: str) -> dict[str, Any]:
        async with self._lock:
            return deepcopy(self._state.get(namespace, {}))

    async def commit(self, writes: Mapping[tuple[str, str], Any], events: list[dict]) -> None:
        async with self._lock:
            for (namespace, key), value in writes.items():
                bucket = self._state.setdefault(namespace, {})
                if value is None:
                    bucket.pop(key, None)
                    if not bucket:
                        self._state.pop(namespace, None)
                else:
                    bucket[key] = deepcopy(value)
            self._events.extend(deepcopy(events))

    async def list_events(self, since: int = 0, limit: int | None = None) -> list[dict[str, Any]]:
        async with self._lock:
            start = bisect_right(self._events, since, key=lambda event: event["sequence"])
            end = None if limit is None else start + limit
            return deepcopy(self._events[start:end])
