"""Order/Offer settlement protocol.

Executes signed intents atomically: the intent's nonce is consumed, the asset
moves from seller to buyer, and the price is split between seller, royalty
receiver and fee receiver. Orders are paid with native value attached to the
call; offers pull the settlement currency from the buyer's allowance.
"""

from __future__ import annotations

import logging
from typing import Any

from ..assets.contract import AssetProtocol
from ..assets.currency import CurrencyProtocol
from ..errors import (
    AuthorizationError,
    MarketplaceError,
    PaymentFailed,
    StateConflictError,
    ValidationError,
)
from ..events.models import (
    NONCE_CONSUMED,
    OFFER_CANCELLED,
    OFFER_EXECUTED,
    ORDER_CANCELLED,
    ORDER_EXECUTED,
)
from ..governance.gate import GovernedContract
from ..ledger.billing import PaymentSplit, split_payment
from ..ledger.state import CallContext, non_reentrant
from .intents import Domain, Intent, Offer, Order, intent_hash, intent_message, verify_intent

logger = logging.getLogger(__name__)


class SettlementProtocol(GovernedContract):
    kind = "settlement"
    payable_methods = ("execute_order",)

    async def initialize(
        self,
        ctx: CallContext,
        *,
        gate: str,
        registry: str,
        currency: str,
        fee_bps: int,
        fee_receiver: str,
        floor_price: int,
    ) -> None:
        await self._configure(
            ctx,
            gate=gate,
            registry=registry,
            fee_bps=fee_bps,
            fee_receiver=fee_receiver,
            floor_price=floor_price,
        )
        if self.ledger.contract_at(currency) is None:
            raise ValidationError("InvalidCurrency", f"no contract at {currency}")
        self._store(ctx, "currency", currency)

    @property
    def domain(self) -> Domain:
        return Domain(chain_id=self.ledger.chain_id, verifying_contract=self.address)

    def hash_of(self, intent: Intent) -> str:
        return intent_hash(self.domain, intent)

    # Queries ---------------------------------------------------------------

    async def order_hash(self, ctx: CallContext, order: Order) -> str:
        return self.hash_of(order)

    async def offer_hash(self, ctx: CallContext, offer: Offer) -> str:
        return self.hash_of(offer)

    async def is_nonce_used(self, ctx: CallContext, signer: str, nonce: int) -> bool:
        return bool(await self._load(ctx, f"nonce:{signer}:{nonce}", False))

    async def is_cancelled(self, ctx: CallContext, digest: str) -> bool:
        return bool(await self._load(ctx, f"cancelled:{digest.lower()}", False))

    async def put_token_on_sale(
        self,
        ctx: CallContext,
        collection_id: int,
        token_id: int,
        price: int,
        nonce: int,
        expiry: int,
    ) -> dict[str, Any]:
        """Build the Order a seller should sign, after checking it could execute."""
        order = Order(
            seller=ctx.sender,
            collection_id=collection_id,
            token_id=token_id,
            price=price,
            nonce=nonce,
            expiry=expiry,
        )
        await self._precheck(ctx, order)
        asset = await self._resolve_asset(ctx, collection_id)
        if await asset.owner_of(ctx, token_id) != ctx.sender:
            raise ValidationError("NotTokenOwner", f"{ctx.sender} does not own token {token_id}")
        if not await asset.is_approved(ctx, token_id, self.address):
            raise AuthorizationError("AssetNotApproved", f"token {token_id} is not approved for settlement")
        return {"order": intent_message(order), "hash": self.hash_of(order)}

    async def create_offer(
        self,
        ctx: CallContext,
        collection_id: int,
        token_id: int,
        price: int,
        nonce: int,
        expiry: int,
    ) -> dict[str, Any]:
        """Build the Offer a buyer should sign, after checking it could execute."""
        offer = Offer(
            buyer=ctx.sender,
            collection_id=collection_id,
            token_id=token_id,
            price=price,
            nonce=nonce,
            expiry=expiry,
        )
        await self._precheck(ctx, offer)
        asset = await self._resolve_asset(ctx, collection_id)
        if await asset.owner_of(ctx, token_id) == ctx.sender:
            raise ValidationError("InvalidOfferOperation", f"{ctx.sender} already owns token {token_id}")
        await self._require_funds(ctx, offer)
        return {"offer": intent_message(offer), "hash": self.hash_of(offer)}

    # Execution -------------------------------------------------------------

    async def execute_order(self, ctx: CallContext, order: Order, signature: str) -> str:
        async with non_reentrant(ctx, self.address):
            await self._require_active(ctx)
            digest = await self._check_intent(ctx, order, signature)
            if ctx.sender == order.seller:
                raise ValidationError("InvalidCaller", "seller cannot execute their own order")
            asset = await self._resolve_asset(ctx, order.collection_id)
            await self._require_listed(ctx, asset, order.seller, order.token_id)
            if ctx.value < order.price:
                raise ValidationError(
                    "InsufficientPayment", f"attached {ctx.value}, price is {order.price}"
                )

            self._consume_nonce(ctx, order.seller, order.nonce)
            await asset.transfer(
                ctx.derive(sender=self.address, target=asset.address),
                order.seller,
                ctx.sender,
                order.token_id,
            )
            royalty_receiver, split = await self._split(ctx, asset, order.token_id, order.price)
            fee_receiver = await self._load(ctx, "fee_receiver")
            await self._pay(ctx, order.seller, split.proceeds)
            if royalty_receiver is not None:
                await self._pay(ctx, royalty_receiver, split.royalty)
            await self._pay(ctx, fee_receiver, split.fee)
            await self._pay(ctx, ctx.sender, ctx.value - order.price)

            self._emit(
                ctx,
                ORDER_EXECUTED,
                hash=digest,
                seller=order.seller,
                buyer=ctx.sender,
                collection_id=order.collection_id,
                token_id=order.token_id,
                price=str(order.price),
                royalty=str(split.royalty),
                fee=str(split.fee),
            )
            logger.info("order %s executed: token %s -> %s", digest, order.token_id, ctx.sender)
            return digest

    async def execute_offer(self, ctx: CallContext, offer: Offer, signature: str) -> str:
        async with non_reentrant(ctx, self.address):
            await self._require_active(ctx)
            digest = await self._check_intent(ctx, offer, signature)
            if ctx.sender == offer.buyer:
                raise ValidationError("InvalidCaller", "buyer cannot execute their own offer")
            asset = await self._resolve_asset(ctx, offer.collection_id)
            await self._require_listed(ctx, asset, ctx.sender, offer.token_id)
            await self._require_funds(ctx, offer)

            seller = ctx.sender
            self._consume_nonce(ctx, offer.buyer, offer.nonce)
            await asset.transfer(
                ctx.derive(sender=self.address, target=asset.address),
                seller,
                offer.buyer,
                offer.token_id,
            )
            royalty_receiver, split = await self._split(ctx, asset, offer.token_id, offer.price)
            fee_receiver = await self._load(ctx, "fee_receiver")
            await self._pull(ctx, offer.buyer, seller, split.proceeds)
            if royalty_receiver is not None:
                await self._pull(ctx, offer.buyer, royalty_receiver, split.royalty)
            await self._pull(ctx, offer.buyer, fee_receiver, split.fee)

            self._emit(
                ctx,
                OFFER_EXECUTED,
                hash=digest,
                seller=seller,
                buyer=offer.buyer,
                collection_id=offer.collection_id,
                token_id=offer.token_id,
                price=str(offer.price),
                royalty=str(split.royalty),
                fee=str(split.fee),
            )
            logger.info("offer %s executed: token %s -> %s", digest, offer.token_id, offer.buyer)
            return digest

    async def cancel_order(self, ctx: CallContext, order: Order, signature: str) -> str:
        return await self._cancel(ctx, order, signature, ORDER_CANCELLED)

    async def cancel_offer(self, ctx: CallContext, offer: Offer, signature: str) -> str:
        return await self._cancel(ctx, offer, signature, OFFER_CANCELLED)

    async def _cancel(self, ctx: CallContext, intent: Intent, signature: str, event: str) -> str:
        async with non_reentrant(ctx, self.address):
            await self._require_active(ctx)
            if ctx.sender != intent.principal:
                raise ValidationError(
                    "InvalidCaller", f"only {intent.principal} can cancel this {intent.primary_type}"
                )
            verify_intent(self.domain, intent, signature)
            if await self.is_nonce_used(ctx, intent.principal, intent.nonce):
                raise StateConflictError("NonceAlreadyUsed", f"nonce {intent.nonce} already consumed")
            digest = self.hash_of(intent)
            if await self.is_cancelled(ctx, digest):
                raise StateConflictError("IntentCancelled", f"{digest} already cancelled")
            self._store(ctx, f"cancelled:{digest}", True)
            self._emit(ctx, event, hash=digest, principal=intent.principal, nonce=str(intent.nonce))
            return digest

    # Helpers ---------------------------------------------------------------

    async def _require_active(self, ctx: CallContext) -> None:
        if not await self.is_active(ctx):
            raise ValidationError("EngineInactive", "settlement is stopped")

    async def _precheck(self, ctx: CallContext, intent: Intent) -> None:
        if intent.price < await self._load_int(ctx, "floor_price"):
            raise ValidationError("IncorrectPrice", f"price {intent.price} is below the floor")
        if intent.expiry < ctx.timestamp:
            raise ValidationError("InvalidExpiry", f"expiry {intent.expiry} is in the past")
        if await self.is_nonce_used(ctx, intent.principal, intent.nonce):
            raise StateConflictError("NonceAlreadyUsed", f"nonce {intent.nonce} already consumed")

    async def _check_intent(self, ctx: CallContext, intent: Intent, signature: str) -> str:
        if ctx.timestamp > intent.expiry:
            raise ValidationError("IntentExpired", f"{intent.primary_type} expired at {intent.expiry}")
        if intent.price < await self._load_int(ctx, "floor_price"):
            raise ValidationError("IncorrectPrice", f"price {intent.price} is below the floor")
        if await self.is_nonce_used(ctx, intent.principal, intent.nonce):
            raise StateConflictError("NonceAlreadyUsed", f"nonce {intent.nonce} already consumed")
        digest = self.hash_of(intent)
        if await self.is_cancelled(ctx, digest):
            raise StateConflictError("IntentCancelled", f"{digest} was cancelled")
        verify_intent(self.domain, intent, signature)
        return digest

    async def _resolve_asset(self, ctx: CallContext, collection_id: int) -> AssetProtocol:
        registry = self.ledger.contract_at(await self._load(ctx, "registry"))
        if registry is None:
            raise ValidationError("CollectionDoesNotExist", "no registry configured")
        resolution = await registry.resolve(ctx, collection_id)
        if not resolution.ok:
            raise ValidationError("CollectionDoesNotExist", f"collection {collection_id}: {resolution.error}")
        return self.ledger.contract_at(resolution.asset_address)

    async def _require_listed(
        self, ctx: CallContext, asset: AssetProtocol, owner: str, token_id: int
    ) -> None:
        if await asset.owner_of(ctx, token_id) != owner:
            raise ValidationError("NotTokenOwner", f"{owner} does not own token {token_id}")
        if not await asset.is_approved(ctx, token_id, self.address):
            raise AuthorizationError("AssetNotApproved", f"token {token_id} is not approved for settlement")

    def _currency(self, address: str | None) -> CurrencyProtocol:
        currency = self.ledger.contract_at(address)
        if currency is None:
            raise ValidationError("InvalidCurrency", "no settlement currency configured")
        return currency

    async def _require_funds(self, ctx: CallContext, offer: Offer) -> None:
        currency = self._currency(await self._load(ctx, "currency"))
        balance = await currency.balance_of(ctx, offer.buyer)
        allowance = await currency.allowance(ctx, offer.buyer, self.address)
        if balance < offer.price or allowance < offer.price:
            raise ValidationError(
                "InsufficientPayment",
                f"{offer.buyer} has balance {balance} and allowance {allowance}, price is {offer.price}",
            )

    def _consume_nonce(self, ctx: CallContext, signer: str, nonce: int) -> None:
        self._store(ctx, f"nonce:{signer}:{nonce}", True)
        self._emit(ctx, NONCE_CONSUMED, signer=signer, nonce=str(nonce))

    async def _split(
        self, ctx: CallContext, asset: AssetProtocol, token_id: int, price: int
    ) -> tuple[str | None, PaymentSplit]:
        receiver, raw_royalty = await asset.royalty_info(ctx, token_id, price)
        if receiver is None:
            raw_royalty = 0
        fee_bps = int(await self._load(ctx, "fee_bps", 0))
        return receiver, split_payment(price, raw_royalty, fee_bps)

    async def _pull(self, ctx: CallContext, payer: str, recipient: str, amount: int) -> None:
        if amount == 0:
            return
        currency = self._currency(await self._load(ctx, "currency"))
        try:
            await currency.transfer_from(
                ctx.derive(sender=self.address, target=currency.address), payer, recipient, amount
            )
        except MarketplaceError as exc:
            raise PaymentFailed(message=f"pull of {amount} from {payer} failed: {exc}") from exc
