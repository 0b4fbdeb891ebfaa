"""Signed call envelopes: authentication and dispatch onto the ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..assets.contract import AssetContract
from ..errors import ValidationError
from ..governance.gate import decode_args
from ..node import Marketplace
from ..settlement.intents import Offer, Order
from ..transport.nonces import NonceCache
from ..transport.signatures import normalize_address, verify_signature
from ..transport.timestamps import assert_within_skew
from ..validation.validator import SchemaRegistry

logger = logging.getLogger(__name__)

Params = dict[str, Any]
Builder = Callable[[Marketplace, Params], tuple[Callable[..., Awaitable[Any]], list[Any]]]


@dataclass(frozen=True)
class Route:
    schema: str
    build: Builder
    read_only: bool = False
    intent: str | None = None


def _intent_call(kind: str, method: str) -> Builder:
    intent_type = Order if kind == "order" else Offer

    def build(node: Marketplace, params: Params) -> tuple[Callable[..., Awaitable[Any]], list[Any]]:
        return getattr(node.settlement, method), [intent_type.from_dict(params[kind]), params["signature"]]

    return build


def _listing(method: str) -> Builder:
    def build(node: Marketplace, params: Params):
        args = [int(params[key]) for key in ("collection_id", "token_id", "price", "nonce", "expiry")]
        return getattr(node.settlement, method), args

    return build


def _auction_ref(method: str) -> Builder:
    def build(node: Marketplace, params: Params):
        return getattr(node.auction, method), [int(params["auction_id"])]

    return build


def _put_on_auction(node: Marketplace, params: Params):
    args = [int(params[key]) for key in ("collection_id", "token_id", "duration", "minimum_bid")]
    return node.auction.put_token_on_auction, args


def _propose(node: Marketplace, params: Params):
    return node.gate.propose, [params["target"].lower(), params["method"], decode_args(params["args"])]


def _gate_action(method: str) -> Builder:
    def build(node: Marketplace, params: Params):
        return getattr(node.gate, method), [int(params["action_id"])]

    return build


def _asset(node: Marketplace, address: str) -> AssetContract:
    asset = node.ledger.contract_at(address.lower())
    if not isinstance(asset, AssetContract):
        raise ValidationError("CollectionDoesNotExist", f"no asset contract at {address}")
    return asset


def _asset_approve(node: Marketplace, params: Params):
    if "token_id" not in params:
        raise ValidationError("InvalidParams", "asset.approve needs token_id")
    asset = _asset(node, params["asset"])
    return asset.approve, [params["operator"].lower(), int(params["token_id"])]


def _asset_operator(node: Marketplace, params: Params):
    if "approved" not in params:
        raise ValidationError("InvalidParams", "asset.set_approval_for_all needs approved")
    asset = _asset(node, params["asset"])
    return asset.set_approval_for_all, [params["operator"].lower(), bool(params["approved"])]


def _currency(method: str) -> Builder:
    def build(node: Marketplace, params: Params):
        return getattr(node.currency, method), [params["account"].lower(), int(params["amount"])]

    return build


ROUTES: dict[str, Route] = {
    "settlement.put_token_on_sale": Route("listing", _listing("put_token_on_sale"), read_only=True),
    "settlement.create_offer": Route("listing", _listing("create_offer"), read_only=True),
    "settlement.execute_order": Route("signed_intent", _intent_call("order", "execute_order"), intent="order"),
    "settlement.execute_offer": Route("signed_intent", _intent_call("offer", "execute_offer"), intent="offer"),
    "settlement.cancel_order": Route("signed_intent", _intent_call("order", "cancel_order"), intent="order"),
    "settlement.cancel_offer": Route("signed_intent", _intent_call("offer", "cancel_offer"), intent="offer"),
    "auction.put_token_on_auction": Route("auction_listing", _put_on_auction),
    "auction.make_a_bid": Route("auction_ref", _auction_ref("make_a_bid")),
    "auction.finalize_auction": Route("auction_ref", _auction_ref("finalize_auction")),
    "auction.withdraw_auction_bid": Route("auction_ref", _auction_ref("withdraw_auction_bid")),
    "auction.cancel_auction": Route("auction_ref", _auction_ref("cancel_auction")),
    "gate.propose": Route("gate_proposal", _propose),
    "gate.approve": Route("gate_action", _gate_action("approve")),
    "gate.execute": Route("gate_action", _gate_action("execute")),
    "asset.approve": Route("asset_approval", _asset_approve),
    "asset.set_approval_for_all": Route("asset_approval", _asset_operator),
    "currency.approve": Route("currency_amount", _currency("approve")),
    "currency.transfer": Route("currency_amount", _currency("transfer")),
}


def envelope_payload(envelope: dict[str, Any]) -> dict[str, Any]:
    """The signed portion of an envelope: everything except the signature."""
    return {key: value for key, value in envelope.items() if key != "signature"}


@dataclass
class RpcService:
    node: Marketplace
    schemas: SchemaRegistry
    nonce_cache: NonceCache
    max_skew_ms: int

    async def submit(self, envelope: dict[str, Any]) -> dict[str, Any]:
        self.schemas.validate("envelope", envelope)
        sender = normalize_address(envelope["sender"])
        assert_within_skew(envelope["ts"], max_skew_ms=self.max_skew_ms)
        verify_signature(envelope_payload(envelope), envelope["signature"], sender)
        await self.nonce_cache.assert_fresh(sender, envelope["nonce"])

        method = envelope["method"]
        route = ROUTES.get(method)
        if route is None:
            raise ValidationError("UnknownMethod", f"unsupported method {method}")
        params = envelope["params"]
        self.schemas.validate(route.schema, params)
        if route.intent is not None:
            if route.intent not in params:
                raise ValidationError("InvalidIntent", f"{method} needs an {route.intent}")
            self.schemas.validate(route.intent, params[route.intent])
        value = int(envelope.get("value") or 0)
        if route.read_only and value:
            raise ValidationError("InvalidValue", f"{method} takes no value")

        call, args = route.build(self.node, params)
        ledger = self.node.ledger
        if route.read_only:
            result = await ledger.query(sender, call, *args)
        else:
            result = await ledger.transact(sender, call, *args, value=value)
        logger.info("rpc %s from %s committed", method, sender)
        return {"method": method, "sender": sender, "result": result}
