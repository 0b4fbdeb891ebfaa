"""Storage backend factory."""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from ..config import ServerConfig
from .in_memory import InMemoryStorage

StateKey = tuple[str, str]


class StateStorage(Protocol):
    """Keyed ledger store addressed by ``(namespace, key)``.

    ``commit`` applies every write and appends every event as one atomic
    batch. A ``None`` value in ``writes`` deletes the key.
    """

    async def get(self, namespace: str, key: str) -> Any | None: ...

    async def scan(self, namespace: str) -> dict[str, Any]: ...

    async def commit(self, writes: Mapping[StateKey, Any], events: list[dict]) -> None: ...

    async def list_events(self, since: int = 0, limit: int | None = None) -> list[dict]:
        """Committed events with ``sequence > since`` in order, at most ``limit`` of them."""
        ...


def build_storage(config: ServerConfig) -> StateStorage:
    backend = config.ledger.backend
    options = dict(config.ledger.options)
    if backend == "in_memory":
        return InMemoryStorage()
    if backend == "redis":
        from .redis import RedisStorage

        return RedisStorage(**options)
    if backend == "postgres":
        from .postgres import PostgresStorage

        return PostgresStorage(**options)
    if backend == "firestore":
        from .firestore import FirestoreStorage

        return FirestoreStorage(**options)
    raise ValueError(f"unknown storage backend {backend}")
