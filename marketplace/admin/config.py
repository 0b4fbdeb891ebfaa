"""Expose the loaded node config and the live on-ledger configuration."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..config import ServerConfig
from ..node import Marketplace

router = APIRouter(prefix="/admin", tags=["admin"])

_SYSTEM = "0x" + "0" * 64


def _get_config(request: Request) -> ServerConfig:
    return request.app.state.server_config


def _get_marketplace(request: Request) -> Marketplace:
    return request.app.state.marketplace


@router.get("/config")
async def config(
    request: Request,
    config: ServerConfig = Depends(_get_config),
    node: Marketplace = Depends(_get_marketplace),
) -> dict:
    ledger = node.ledger
    settlement = await ledger.query(_SYSTEM, node.settlement.fee_config)
    auction = await ledger.query(_SYSTEM, node.auction.fee_config)
    auction.update(await ledger.query(_SYSTEM, node.auction.parameters))
    for section in (settlement, auction):
        section["floor_price"] = str(section["floor_price"])
    return {
        "version": request.app.version,
        "operator_id": config.operator.operator_id,
        "operator_admin": node.admin,
        "chain_id": config.ledger.chain_id,
        "storage_backend": config.ledger.backend,
        "events_backend": config.events.backend,
        "governance": {
            "members": list(config.governance.members) or [node.admin],
            "quorum": config.governance.quorum,
            "delay_seconds": config.governance.delay_seconds,
        },
        "settlement": settlement,
        "auction": auction,
    }
