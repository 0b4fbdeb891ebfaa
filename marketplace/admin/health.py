"""Admin health endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(prefix="/admin", tags=["admin"])

logger = logging.getLogger(__name__)

_SYSTEM = "0x" + "0" * 64


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    start_time = getattr(request.app.state, "start_time", None)
    if start_time:
        uptime = int((datetime.now(timezone.utc) - start_time).total_seconds())
    else:
        uptime = 0
    settings = request.app.state.server_config
    ledger = request.app.state.ledger
    node = request.app.state.marketplace
    body: dict[str, Any] = {
        "status": "healthy",
        "uptime_seconds": uptime,
        "version": request.app.version,
        "storage_backend": settings.ledger.backend,
        "ledger_time": ledger.now(),
        "chain_id": ledger.chain_id,
        "contracts": len(ledger.contracts()),
    }
    try:
        body["last_event_sequence"] = await ledger.event_sequence()
        body["settlement_active"] = await ledger.query(_SYSTEM, node.settlement.is_active)
        body["auction_active"] = await ledger.query(_SYSTEM, node.auction.is_active)
    except Exception as exc:
        logger.warning("health check could not read ledger storage: %s", exc)
        body["status"] = "degraded"
        body["storage_error"] = str(exc)
    return body
