from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, Request, status
from jsonschema import ValidationError as SchemaValidationError

from .admin import config as admin_config
from .admin import events as admin_events
from .admin import health as admin_health
from .admin import stats as admin_stats
from .config import ServerConfig, get_collections_config_path, get_server_config
from .errors import (
    AuthorizationError,
    MarketplaceError,
    StateConflictError,
    TransferFailureError,
)
from .events.publisher import build_publisher
from .node import Marketplace, build_marketplace
from .rpc.handler import RpcService
from .settlement.intents import Offer, Order
from .storage import build_storage
from .transport.nonces import NonceCache, NonceError
from .transport.signatures import SignatureError, normalize_address
from .transport.timestamps import TimestampError
from .validation.validator import SchemaRegistry, get_schema_registry

logger = logging.getLogger(__name__)

# Read-only queries carry no authenticated sender.
ANONYMOUS = "0x" + "0" * 64


@asynccontextmanager
async def lifespan(app: FastAPI):
    server_config = get_server_config()
    schema_registry = get_schema_registry()
    storage = build_storage(server_config)
    publisher = build_publisher(server_config.events)
    node = await build_marketplace(
        server_config,
        storage,
        publisher=publisher,
        collections_path=get_collections_config_path(),
    )
    nonce_cache = NonceCache(server_config.transport.nonce_ttl_seconds)
    rpc_service = RpcService(
        node,
        schema_registry,
        nonce_cache,
        server_config.transport.max_clock_skew_ms,
    )

    app.state.server_config = server_config
    app.state.schema_registry = schema_registry
    app.state.storage = storage
    app.state.publisher = publisher
    app.state.marketplace = node
    app.state.ledger = node.ledger
    app.state.nonce_cache = nonce_cache
    app.state.rpc_service = rpc_service
    app.state.start_time = datetime.now(timezone.utc)

    yield


app = FastAPI(
    title="Marketplace Settlement Node",
    version="1.0.0",
    docs_url="/docs",
    lifespan=lifespan,
)

app.include_router(admin_health.router)
app.include_router(admin_stats.router)
app.include_router(admin_config.router)
app.include_router(admin_events.router)


# Dependency helpers ---------------------------------------------------------


def get_server_settings(request: Request) -> ServerConfig:
    return request.app.state.server_config


def get_schema_service(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def get_marketplace(request: Request) -> Marketplace:
    return request.app.state.marketplace


def get_rpc_service(request: Request) -> RpcService:
    return request.app.state.rpc_service


# Error mapping --------------------------------------------------------------


def error_status(exc: Exception) -> int:
    if isinstance(exc, (SignatureError, NonceError, TimestampError)):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, AuthorizationError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, StateConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, TransferFailureError):
        return status.HTTP_424_FAILED_DEPENDENCY
    return status.HTTP_422_UNPROCESSABLE_ENTITY


def error_detail(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, MarketplaceError):
        return {"code": exc.code, "message": exc.message}
    if isinstance(exc, SchemaValidationError):
        return {"code": "InvalidPayload", "message": exc.message}
    return {"code": type(exc).__name__, "message": str(exc)}


def http_error(exc: Exception) -> HTTPException:
    return HTTPException(status_code=error_status(exc), detail=error_detail(exc))


_CALL_ERRORS = (
    MarketplaceError,
    SchemaValidationError,
    SignatureError,
    NonceError,
    TimestampError,
)


# Routes ---------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root(
    settings: ServerConfig = Depends(get_server_settings),
    node: Marketplace = Depends(get_marketplace),
) -> dict[str, Any]:
    return {
        "service": "marketplace-node",
        "version": app.version,
        "chain_id": settings.ledger.chain_id,
        "transport": {
            "nonce_ttl_seconds": settings.transport.nonce_ttl_seconds,
            "max_clock_skew_ms": settings.transport.max_clock_skew_ms,
        },
        "contracts": {
            "gate": node.gate.address,
            "registry": node.registry.address,
            "currency": node.currency.address,
            "settlement": node.settlement.address,
            "auction": node.auction.address,
        },
    }


@app.get("/ping", tags=["meta"])
async def ping() -> dict[str, Any]:
    return {"status": "ok", "version": app.version}


@app.post("/rpc", tags=["rpc"])
async def rpc(
    payload: dict[str, Any] = Body(...),
    service: RpcService = Depends(get_rpc_service),
) -> dict[str, Any]:
    try:
        return await service.submit(payload)
    except _CALL_ERRORS as exc:
        logger.warning("rejected %s: %s", payload.get("method"), exc)
        raise http_error(exc) from exc


# Settlement queries ---------------------------------------------------------


@app.get("/settlement/config", tags=["settlement"])
async def settlement_config(node: Marketplace = Depends(get_marketplace)) -> dict[str, Any]:
    ledger = node.ledger
    fees = await ledger.query(ANONYMOUS, node.settlement.fee_config)
    return {
        **fees,
        "active": await ledger.query(ANONYMOUS, node.settlement.is_active),
        "domain": node.settlement.domain.to_dict(),
    }


@app.get("/settlement/nonces/{signer}/{nonce}", tags=["settlement"])
async def nonce_status(signer: str, nonce: int, node: Marketplace = Depends(get_marketplace)) -> dict[str, Any]:
    try:
        signer = normalize_address(signer)
    except SignatureError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    used = await node.ledger.query(ANONYMOUS, node.settlement.is_nonce_used, signer, nonce)
    return {"signer": signer, "nonce": nonce, "used": used}


@app.get("/settlement/cancelled/{digest}", tags=["settlement"])
async def cancellation_status(digest: str, node: Marketplace = Depends(get_marketplace)) -> dict[str, Any]:
    cancelled = await node.ledger.query(ANONYMOUS, node.settlement.is_cancelled, digest)
    return {"hash": digest.lower(), "cancelled": cancelled}


@app.post("/settlement/order-hash", tags=["settlement"])
async def intent_hash(
    payload: dict[str, Any] = Body(...),
    schemas: SchemaRegistry = Depends(get_schema_service),
    node: Marketplace = Depends(get_marketplace),
) -> dict[str, Any]:
    try:
        if "order" in payload:
            schemas.validate("order", payload["order"])
            intent = Order.from_dict(payload["order"])
            digest = await node.ledger.query(ANONYMOUS, node.settlement.order_hash, intent)
        elif "offer" in payload:
            schemas.validate("offer", payload["offer"])
            intent = Offer.from_dict(payload["offer"])
            digest = await node.ledger.query(ANONYMOUS, node.settlement.offer_hash, intent)
        else:
            raise HTTPException(status_code=422, detail="order or offer is required")
    except _CALL_ERRORS as exc:
        raise http_error(exc) from exc
    return {"hash": digest, "primary_type": intent.primary_type}


@app.get("/collections", tags=["settlement"])
async def collections(node: Marketplace = Depends(get_marketplace)) -> dict[str, str]:
    entries = await node.ledger.query(ANONYMOUS, node.registry.collections)
    return {str(collection_id): address for collection_id, address in sorted(entries.items())}


# Auction queries ------------------------------------------------------------


@app.get("/auctions/escrow", tags=["auction"])
async def auction_escrow(node: Marketplace = Depends(get_marketplace)) -> dict[str, Any]:
    ledger = node.ledger
    return {
        "escrowed_total": str(await ledger.query(ANONYMOUS, node.auction.escrowed_total)),
        "balance": str(await ledger.balance_of(node.auction.address)),
        "last_auction_id": await ledger.query(ANONYMOUS, node.auction.last_auction_id),
    }


@app.get("/auctions/config", tags=["auction"])
async def auction_config(node: Marketplace = Depends(get_marketplace)) -> dict[str, Any]:
    ledger = node.ledger
    return {
        **await ledger.query(ANONYMOUS, node.auction.fee_config),
        **await ledger.query(ANONYMOUS, node.auction.parameters),
        "active": await ledger.query(ANONYMOUS, node.auction.is_active),
    }


@app.get("/auctions/{auction_id}", tags=["auction"])
async def auction_info(auction_id: int, node: Marketplace = Depends(get_marketplace)) -> dict[str, Any]:
    try:
        info = await node.ledger.query(ANONYMOUS, node.auction.auction_info, auction_id)
    except MarketplaceError as exc:
        raise HTTPException(status_code=404, detail=error_detail(exc)) from exc
    info["floor_price"] = str(info["floor_price"])
    info["highest_bid"] = await node.ledger.query(ANONYMOUS, node.auction.highest_bid, auction_id)
    return info


@app.get("/auctions/{auction_id}/bids", tags=["auction"])
async def auction_bids(auction_id: int, node: Marketplace = Depends(get_marketplace)) -> list[dict[str, str]]:
    return await node.ledger.query(ANONYMOUS, node.auction.bids, auction_id)


@app.get("/auctions/{auction_id}/bids/{bidder}", tags=["auction"])
async def auction_bid_of(
    auction_id: int, bidder: str, node: Marketplace = Depends(get_marketplace)
) -> dict[str, Any]:
    amount = await node.ledger.query(ANONYMOUS, node.auction.bid_of, auction_id, bidder.lower())
    return {"auction_id": auction_id, "bidder": bidder.lower(), "amount": str(amount)}


@app.get("/auctions/{auction_id}/next-minimum-bid", tags=["auction"])
async def auction_next_minimum_bid(
    auction_id: int, node: Marketplace = Depends(get_marketplace)
) -> dict[str, Any]:
    try:
        amount = await node.ledger.query(ANONYMOUS, node.auction.next_minimum_bid, auction_id)
    except MarketplaceError as exc:
        raise http_error(exc) from exc
    return {"auction_id": auction_id, "next_minimum_bid": str(amount)}


# Accounts and governance ----------------------------------------------------


@app.get("/accounts/{address}", tags=["accounts"])
async def account(address: str, node: Marketplace = Depends(get_marketplace)) -> dict[str, Any]:
    address = address.lower()
    ledger = node.ledger
    return {
        "address": address,
        "native": str(await ledger.balance_of(address)),
        "currency": str(await ledger.query(ANONYMOUS, node.currency.balance_of, address)),
        "settlement_allowance": str(
            await ledger.query(ANONYMOUS, node.currency.allowance, address, node.settlement.address)
        ),
    }


@app.get("/gate/actions/{action_id}", tags=["governance"])
async def gate_action(action_id: int, node: Marketplace = Depends(get_marketplace)) -> dict[str, Any]:
    try:
        return await node.ledger.query(ANONYMOUS, node.gate.action, action_id)
    except MarketplaceError as exc:
        raise HTTPException(status_code=404, detail=error_detail(exc)) from exc


def main() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    listen = get_server_config().listen
    uvicorn.run(app, host=listen.get("host", "0.0.0.0"), port=int(listen.get("port", 8080)))


if __name__ == "__main__":
    main()
