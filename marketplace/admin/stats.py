"""Operational stats endpoint."""

from __future__ import annotations

from collections import Counter
from typing import Any

from fastapi import APIRouter, Depends, Request

from ..events.models import AUCTION_ENDED, BID_PLACED, OFFER_EXECUTED, ORDER_EXECUTED
from ..events.publisher import EventPublisher
from ..node import Marketplace

router = APIRouter(prefix="/admin", tags=["admin"])

_SYSTEM = "0x" + "0" * 64
_BATCH = 500


def _get_marketplace(request: Request) -> Marketplace:
    return request.app.state.marketplace


def _get_publisher(request: Request) -> EventPublisher:
    return request.app.state.publisher


@router.get("/stats")
async def stats(
    node: Marketplace = Depends(_get_marketplace),
    publisher: EventPublisher = Depends(_get_publisher),
) -> dict[str, Any]:
    ledger = node.ledger
    by_name: Counter[str] = Counter()
    volume = 0
    fees = 0
    royalties = 0
    cursor = 0
    while True:
        batch = await ledger.storage.list_events(since=cursor, limit=_BATCH)
        if not batch:
            break
        for event in batch:
            by_name[event["name"]] += 1
            if event["name"] not in {ORDER_EXECUTED, OFFER_EXECUTED, AUCTION_ENDED}:
                continue
            payload = event.get("payload") or {}
            volume += int(payload.get("price") or payload.get("amount") or 0)
            fees += int(payload.get("fee") or 0)
            royalties += int(payload.get("royalty") or 0)
        cursor = batch[-1]["sequence"]

    total_auctions = await ledger.query(_SYSTEM, node.auction.last_auction_id)
    return {
        "total_events": sum(by_name.values()),
        "events_by_name": dict(by_name),
        "settled_trades": by_name[ORDER_EXECUTED] + by_name[OFFER_EXECUTED],
        "total_auctions": total_auctions,
        "total_bids": by_name[BID_PLACED],
        "traded_volume": str(volume),
        "fees_collected": str(fees),
        "royalties_paid": str(royalties),
        "escrowed_total": str(await ledger.query(_SYSTEM, node.auction.escrowed_total)),
        "published_events": publisher.published,
        "failed_publishes": publisher.failed,
    }
