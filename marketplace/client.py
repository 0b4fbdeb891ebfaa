"""HTTP client for a settlement node."""

from __future__ import annotations

import uuid
from typing import Any

import httpx
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .governance.gate import encode_args
from .settlement.intents import Domain, Intent, Offer, Order, intent_message, sign_intent
from .transport.signatures import address_of, sign_payload
from .transport.timestamps import format_timestamp


class MarketplaceClientError(RuntimeError):
    def __init__(self, status_code: int, detail: Any) -> None:
        self.status_code = status_code
        self.detail = detail
        code = detail.get("code") if isinstance(detail, dict) else None
        self.code = code
        super().__init__(f"{status_code}: {detail}")


class MarketplaceClient:
    """Signs call envelopes with one account key and submits them to ``/rpc``."""

    def __init__(
        self,
        private_key: Ed25519PrivateKey,
        *,
        base_url: str = "http://localhost:8080",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._key = private_key
        self.address = address_of(private_key.public_key())
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._domain: Domain | None = None

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "MarketplaceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # Envelopes ---------------------------------------------------------------

    def build_envelope(self, method: str, params: dict[str, Any], value: int = 0) -> dict[str, Any]:
        envelope: dict[str, Any] = {
            "sender": self.address,
            "nonce": uuid.uuid4().hex,
            "ts": format_timestamp(),
            "method": method,
            "params": params,
        }
        if value:
            envelope["value"] = str(value)
        envelope["signature"] = sign_payload(envelope, self._key)
        return envelope

    async def call(self, method: str, params: dict[str, Any], value: int = 0) -> Any:
        response = await self._client.post("/rpc", json=self.build_envelope(method, params, value))
        return self._unwrap(response)["result"]

    async def _get(self, path: str) -> Any:
        return self._unwrap(await self._client.get(path))

    @staticmethod
    def _unwrap(response: httpx.Response) -> Any:
        if response.is_error:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            raise MarketplaceClientError(response.status_code, detail)
        return response.json()

    # Intents -----------------------------------------------------------------

    async def domain(self) -> Domain:
        if self._domain is None:
            data = (await self._get("/settlement/config"))["domain"]
            self._domain = Domain(
                chain_id=int(data["chain_id"]),
                verifying_contract=data["verifying_contract"],
                name=data["name"],
                version=data["version"],
            )
        return self._domain

    async def sign(self, intent: Intent) -> str:
        return sign_intent(await self.domain(), intent, self._key)

    async def sign_order(
        self, collection_id: int, token_id: int, price: int, nonce: int, expiry: int
    ) -> tuple[Order, str]:
        order = Order(
            seller=self.address,
            collection_id=collection_id,
            token_id=token_id,
            price=price,
            nonce=nonce,
            expiry=expiry,
        )
        return order, await self.sign(order)

    async def sign_offer(
        self, collection_id: int, token_id: int, price: int, nonce: int, expiry: int
    ) -> tuple[Offer, str]:
        offer = Offer(
            buyer=self.address,
            collection_id=collection_id,
            token_id=token_id,
            price=price,
            nonce=nonce,
            expiry=expiry,
        )
        return offer, await self.sign(offer)

    # Settlement --------------------------------------------------------------

    async def execute_order(self, order: Order, signature: str, value: int | None = None) -> str:
        params = {"order": intent_message(order), "signature": signature}
        return await self.call("settlement.execute_order", params, order.price if value is None else value)

    async def execute_offer(self, offer: Offer, signature: str) -> str:
        params = {"offer": intent_message(offer), "signature": signature}
        return await self.call("settlement.execute_offer", params)

    async def cancel_order(self, order: Order, signature: str) -> str:
        return await self.call("settlement.cancel_order", {"order": intent_message(order), "signature": signature})

    async def cancel_offer(self, offer: Offer, signature: str) -> str:
        return await self.call("settlement.cancel_offer", {"offer": intent_message(offer), "signature": signature})

    # Auctions ----------------------------------------------------------------

    async def put_token_on_auction(
        self, collection_id: int, token_id: int, duration: int, minimum_bid: int
    ) -> int:
        params = {
            "collection_id": collection_id,
            "token_id": token_id,
            "duration": duration,
            "minimum_bid": str(minimum_bid),
        }
        return await self.call("auction.put_token_on_auction", params)

    async def make_a_bid(self, auction_id: int, amount: int) -> dict[str, Any]:
        return await self.call("auction.make_a_bid", {"auction_id": auction_id}, amount)

    async def finalize_auction(self, auction_id: int) -> dict[str, Any]:
        return await self.call("auction.finalize_auction", {"auction_id": auction_id})

    async def withdraw_auction_bid(self, auction_id: int) -> int:
        return await self.call("auction.withdraw_auction_bid", {"auction_id": auction_id})

    async def cancel_auction(self, auction_id: int) -> None:
        return await self.call("auction.cancel_auction", {"auction_id": auction_id})

    # Governance and approvals ------------------------------------------------

    async def propose(self, target: str, method: str, *args: Any) -> int:
        params = {"target": target, "method": method, "args": encode_args(args)}
        return await self.call("gate.propose", params)

    async def approve_action(self, action_id: int) -> None:
        return await self.call("gate.approve", {"action_id": action_id})

    async def execute_action(self, action_id: int) -> Any:
        return await self.call("gate.execute", {"action_id": action_id})

    async def approve_asset(self, asset: str, operator: str, token_id: int) -> None:
        return await self.call("asset.approve", {"asset": asset, "operator": operator, "token_id": token_id})

    async def set_approval_for_all(self, asset: str, operator: str, approved: bool) -> None:
        params = {"asset": asset, "operator": operator, "approved": approved}
        return await self.call("asset.set_approval_for_all", params)

    async def approve_currency(self, spender: str, amount: int) -> None:
        return await self.call("currency.approve", {"account": spender, "amount": str(amount)})

    # Queries -----------------------------------------------------------------

    async def auction(self, auction_id: int) -> dict[str, Any]:
        return await self._get(f"/auctions/{auction_id}")

    async def bids(self, auction_id: int) -> list[dict[str, str]]:
        return await self._get(f"/auctions/{auction_id}/bids")

    async def next_minimum_bid(self, auction_id: int) -> int:
        data = await self._get(f"/auctions/{auction_id}/next-minimum-bid")
        return int(data["next_minimum_bid"])

    async def is_nonce_used(self, signer: str, nonce: int) -> bool:
        return (await self._get(f"/settlement/nonces/{signer}/{nonce}"))["used"]

    async def is_cancelled(self, digest: str) -> bool:
        return (await self._get(f"/settlement/cancelled/{digest}"))["cancelled"]

    async def account(self, address: str | None = None) -> dict[str, Any]:
        return await self._get(f"/accounts/{address or self.address}")
