"""Postgres storage backend leveraging asyncpg."""

from __future__ import annotations

from typing import Any, Mapping

import asyncpg
import orjson


class PostgresStorage:
    def __init__(self, *, dsn: str | None = None, **connect_kwargs: Any) -> None:
        if not dsn and not connect_kwargs:
            raise ValueError("postgres connection details missing")
        self._dsn = dsn
        self._connect_kwargs = connect_kwargs
        self._pool: asyncpg.Pool | None = None

    def _encode(self, payload: Any) -> str:
        return orjson.dumps(payload).decode()

    def _decode(self, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            value = value.decode()
        if isinstance(value, str):
            return orjson.loads(value)
        return value

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=self._dsn, **self._connect_kwargs)
            async with self._pool.acquire() as conn:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ledger_state (
                        namespace TEXT NOT NULL,
                        key TEXT NOT NULL,
                        data JSONB NOT NULL,
                        PRIMARY KEY (namespace, key)
                    );
                    CREATE TABLE IF NOT EXISTS ledger_events (
                        id BIGSERIAL PRIMARY KEY,
                        data JSONB NOT NULL,
                        created_at TIMESTAMP DEFAULT NOW()
                    );
                    """
                )
        return self._pool

    async def get(self, namespace: str, key: str) -> Any | None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """SELECT data FROM ledger_state WHERE namespace=$1 AND key=$2""",
                namespace,
                key,
            )
        if not row:
            return None
        return self._decode(row["data"])

    async def scan(self, namespace: str) -> dict[str, Any]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """SELECT key, data FROM ledger_state WHERE namespace=$1 ORDER BY key""",
                namespace,
            )
        return {row["key"]: self._decode(row["data"]) for row in rows}

    async def commit(self, writes: Mapping[tuple[str, str], Any], events: list[dict]) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for (namespace, key), value in writes.items():
                    if value is None:
                        await conn.execute(
                            """DELETE FROM ledger_state WHERE namespace=$1 AND key=$2""",
                            namespace,
                            key,
                        )
                        continue
                    await conn.execute(
                        """INSERT INTO ledger_state(namespace, key, data) VALUES($1, $2, $3)
                           ON CONFLICT (namespace, key) DO UPDATE SET data=EXCLUDED.data""",
                        namespace,
                        key,
                        self._encode(value),
                    )
                for event in events:
                    await conn.execute(
                        """INSERT INTO ledger_events(data) VALUES($1)""",
                        self._encode(event),
                    )

    async def list_events(self, since: int = 0, limit: int | None = None) -> list[dict[str, Any]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """SELECT data FROM ledger_events
                   WHERE (data->>'sequence')::bigint > $1
                   ORDER BY id LIMIT $2""",
                since,
                limit,
            )
        return [self._decode(row["data"]) for row in rows]
