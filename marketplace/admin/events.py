"""Committed ledger event log."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from ..storage import StateStorage

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_storage(request: Request) -> StateStorage:
    return request.app.state.storage


_BATCH = 500


@router.get("/events")
async def events(
    name: str | None = None,
    component: str | None = None,
    since: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    storage: StateStorage = Depends(_get_storage),
) -> list[dict[str, Any]]:
    selected: list[dict[str, Any]] = []
    cursor = since
    while len(selected) < limit:
        batch = await storage.list_events(since=cursor, limit=_BATCH)
        if not batch:
            break
        for event in batch:
            if name and event["name"] != name:
                continue
            if component and event["component"] != component:
                continue
            selected.append(event)
            if len(selected) >= limit:
                break
        cursor = batch[-1]["sequence"]
    return selected
