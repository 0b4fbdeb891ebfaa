"""Firestore storage backend leveraging google-cloud-firestore."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping

from google.cloud import firestore
from google.oauth2 import service_account


class FirestoreStorage:
    """One document per ``(namespace, key)`` under ``<collection>/<namespace>/entries``.

    Firestore batches are limited to 500 writes, which bounds the size of a
    single ledger transaction on this backend.
    """

    def __init__(
        self,
        *,
        project_id: str,
        collection: str = "ledger_state",
        events_collection: str = "ledger_events",
        credentials_path: str | None = None,
    ) -> None:
        if not project_id:
            raise ValueError("project_id required for firestore backend")
        client_kwargs: dict[str, Any] = {"project": project_id}
        if credentials_path:
            client_kwargs["credentials"] = service_account.Credentials.from_service_account_file(
                credentials_path
            )
        self._client = firestore.Client(**client_kwargs)
        self._collection_name = collection
        self._events_collection_name = events_collection

    def _entries(self, namespace: str):
        return (
            self._client.collection(self._collection_name)
            .document(namespace)
            .collection("entries")
        )

    def _events(self):
        return self._client.collection(self._events_collection_name)

    async def _run(self, func: Callable, *args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)

    async def get(self, namespace: str, key: str) -> Any | None:
        doc = await self._run(self._entries(namespace).document(key).get)
        if not doc.exists:
            return None
        return doc.to_dict().get("value")

    async def scan(self, namespace: str) -> dict[str, Any]:
        docs = await self._run(lambda: list(self._entries(namespace).stream()))
        return {doc.id: doc.to_dict().get("value") for doc in docs}

    async def commit(self, writes: Mapping[tuple[str, str], Any], events: list[dict]) -> None:
        batch = self._client.batch()
        for (namespace, key), value in writes.items():
            ref = self._entries(namespace).document(key)
            if value is None:
                batch.delete(ref)
            else:
                batch.set(ref, {"value": value})
        for event in events:
            ref = self._events().document(f"{event['sequence']:020d}")
            batch.set(ref, event)
        await self._run(batch.commit)

    async def list_events(self, since: int = 0, limit: int | None = None) -> list[dict[str, Any]]:
        def fetch():
            query = self._events().where("sequence", ">", since).order_by("sequence")
            if limit is not None:
                query = query.limit(limit)
            return list(query.stream())

        docs = await self._run(fetch)
        return [doc.to_dict() for doc in docs]
