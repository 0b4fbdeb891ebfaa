"""Redis storage backend using redis-py asyncio client."""

from __future__ import annotations

from typing import Any, Mapping

import orjson
from redis import asyncio as aioredis


class RedisStorage:
    def __init__(self, *, url: str, prefix: str = "marketplace:state") -> None:
        if not url:
            raise ValueError("redis url missing")
        self._redis = aioredis.from_url(url)
        self._prefix = prefix.rstrip(":")

    def _namespace_key(self, namespace: str) -> str:
        return f"{self._prefix}:ns:{namespace}"

    def _events_key(self) -> str:
        return f"{self._prefix}:events"

    async def get(self, namespace: str, key: str) -> Any | None:
        raw = await self._redis.hget(self._namespace_key(namespace), key)
        if raw is None:
            return None
        return orjson.loads(raw)

    async def scan(self, namespace: str) -> dict[str, Any]:
        raw = await self._redis.hgetall(self._namespace_key(namespace))
        result: dict[str, Any] = {}
        for key, value in raw.items():
            if isinstance(key, bytes):
                key = key.decode()
            result[key] = orjson.loads(value)
        return result

    async def commit(self, writes: Mapping[tuple[str, str], Any], events: list[dict]) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            for (namespace, key), value in writes.items():
                if value is None:
                    pipe.hdel(self._namespace_key(namespace), key)
                else:
                    pipe.hset(self._namespace_key(namespace), key, orjson.dumps(value))
            for event in events:
                pipe.rpush(self._events_key(), orjson.dumps(event))
            await pipe.execute()

    async def list_events(self, since: int = 0, limit: int | None = None) -> list[dict[str, Any]]:
        # Sequences start at 1 and are contiguous, so sequence n sits at index n - 1.
        stop = -1 if limit is None else since + limit - 1
        values = await self._redis.lrange(self._events_key(), since, stop)
        return [orjson.loads(value) for value in values]
