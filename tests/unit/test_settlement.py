"""Unit tests for signed order/offer settlement."""

from __future__ import annotations

import pytest

from marketplace.errors import (
    AuthorizationError,
    PaymentFailed,
    StateConflictError,
    TransferFailureError,
    ValidationError,
)
from marketplace.events.models import NONCE_CONSUMED, ORDER_CANCELLED, ORDER_EXECUTED
from marketplace.ledger.contracts import Contract
from marketplace.settlement.intents import Domain, Offer, Order, intent_hash, sign_intent

from conftest import COLLECTION_ID

PRICE = 1000
TOKEN = 42


class ReentrantReceiver(Contract):
    """Answers an incoming payment by executing the same order again."""

    kind = "reentrant"

    def __init__(self, ledger, label, settlement, order, signature):
        super().__init__(ledger, label)
        self.settlement = settlement
        self.order = order
        self.signature = signature

    async def on_native_received(self, ctx) -> None:
        await self.settlement.execute_order(ctx.derive(sender=self.address, target=None), self.order, self.signature)


class RejectingReceiver(Contract):
    kind = "rejecting"

    async def on_native_received(self, ctx) -> None:
        raise TransferFailureError("Rejected", "no thanks")


async def _listed(world, *, price=PRICE, nonce=1, expiry_in=3600, seller="seller"):
    """Mint a token to ``seller``, approve settlement and return a signed order."""
    owner = world.accounts[seller]
    settlement = world.node.settlement
    await world.mint_token(owner, TOKEN)
    await world.ledger.transact(owner, world.asset.approve, settlement.address, TOKEN)
    order = Order(
        seller=owner,
        collection_id=COLLECTION_ID,
        token_id=TOKEN,
        price=price,
        nonce=nonce,
        expiry=world.clock.now + expiry_in,
    )
    return order, sign_intent(settlement.domain, order, world.keys[seller])


async def _balances(world, *names):
    return [await world.ledger.balance_of(world.accounts[name]) for name in names]


class TestExecuteOrder:
    """Buyer executes a seller-signed order with native value."""

    @pytest.mark.asyncio
    async def test_reference_sale_splits_and_refunds(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, 1200)

        settlement = world.node.settlement
        digest = await world.ledger.transact(buyer, settlement.execute_order, order, signature, value=1200)

        assert digest == settlement.hash_of(order)
        assert await _balances(world, "seller", "royalty", "fee", "buyer") == [925, 50, 25, 200]
        assert await world.ledger.balance_of(settlement.address) == 0
        assert await world.ledger.query(buyer, world.asset.owner_of, TOKEN) == buyer
        assert await world.ledger.query(buyer, settlement.is_nonce_used, order.seller, order.nonce)
        names = [event["name"] for event in await world.storage.list_events()]
        assert names.count(ORDER_EXECUTED) == 1
        assert names.count(NONCE_CONSUMED) == 1

    @pytest.mark.asyncio
    async def test_replay_rejected(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        buyer, carol = world.accounts["buyer"], world.accounts["carol"]
        settlement = world.node.settlement
        await world.ledger.mint_native(buyer, PRICE)
        await world.ledger.mint_native(carol, PRICE)
        await world.ledger.transact(buyer, settlement.execute_order, order, signature, value=PRICE)
        with pytest.raises(StateConflictError) as exc:
            await world.ledger.transact(carol, settlement.execute_order, order, signature, value=PRICE)
        assert exc.value.code == "NonceAlreadyUsed"
        assert await world.ledger.balance_of(carol) == PRICE
        assert await world.ledger.balance_of(world.accounts["seller"]) == 925

    @pytest.mark.asyncio
    async def test_insufficient_payment(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, PRICE)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(
                buyer, world.node.settlement.execute_order, order, signature, value=PRICE - 1
            )
        assert exc.value.code == "InsufficientPayment"
        assert await world.ledger.balance_of(buyer) == PRICE

    @pytest.mark.asyncio
    async def test_expired_order(self, make_world):
        world = await make_world()
        order, signature = await _listed(world, expiry_in=10)
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, PRICE)
        world.clock.advance(11)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(buyer, world.node.settlement.execute_order, order, signature, value=PRICE)
        assert exc.value.code == "IntentExpired"

    @pytest.mark.asyncio
    async def test_signature_from_someone_else(self, make_world):
        world = await make_world()
        order, _ = await _listed(world)
        forged = sign_intent(world.node.settlement.domain, order, world.keys["carol"])
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, PRICE)
        with pytest.raises(AuthorizationError) as exc:
            await world.ledger.transact(buyer, world.node.settlement.execute_order, order, forged, value=PRICE)
        assert exc.value.code == "InvalidSignature"

    @pytest.mark.asyncio
    async def test_tampered_price(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        cheaper = Order(**{**order.__dict__, "price": 500})
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, PRICE)
        with pytest.raises(AuthorizationError):
            await world.ledger.transact(buyer, world.node.settlement.execute_order, cheaper, signature, value=500)

    @pytest.mark.asyncio
    async def test_price_below_floor(self, make_world):
        world = await make_world()
        order, signature = await _listed(world, price=5)
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, 5)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(buyer, world.node.settlement.execute_order, order, signature, value=5)
        assert exc.value.code == "IncorrectPrice"

    @pytest.mark.asyncio
    async def test_seller_no_longer_owner(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        seller, buyer = world.accounts["seller"], world.accounts["buyer"]
        await world.ledger.transact(seller, world.asset.transfer, seller, world.accounts["carol"], TOKEN)
        await world.ledger.mint_native(buyer, PRICE)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(buyer, world.node.settlement.execute_order, order, signature, value=PRICE)
        assert exc.value.code == "NotTokenOwner"

    @pytest.mark.asyncio
    async def test_unregistered_collection(self, make_world):
        world = await make_world()
        order, _ = await _listed(world)
        settlement = world.node.settlement
        stray = Order(**{**order.__dict__, "collection_id": 99})
        signature = sign_intent(settlement.domain, stray, world.keys["seller"])
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, PRICE)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(buyer, settlement.execute_order, stray, signature, value=PRICE)
        assert exc.value.code == "CollectionDoesNotExist"

    @pytest.mark.asyncio
    async def test_failing_fee_receiver_reverts_sale(self, make_world):
        world = await make_world()
        ledger = world.ledger
        rejecting = ledger.deploy(RejectingReceiver(ledger, "rejecting"))
        await world.run_gate(world.node.settlement, "set_fee_receiver", rejecting.address)
        order, signature = await _listed(world)
        buyer = world.accounts["buyer"]
        await ledger.mint_native(buyer, PRICE)

        with pytest.raises(PaymentFailed):
            await ledger.transact(buyer, world.node.settlement.execute_order, order, signature, value=PRICE)

        assert await ledger.balance_of(buyer) == PRICE
        assert await _balances(world, "seller", "royalty") == [0, 0]
        assert await ledger.query(buyer, world.asset.owner_of, TOKEN) == world.accounts["seller"]
        assert not await ledger.query(buyer, world.node.settlement.is_nonce_used, order.seller, order.nonce)

    @pytest.mark.asyncio
    async def test_reentrant_seller_reverts_sale(self, make_world):
        world = await make_world()
        ledger = world.ledger
        settlement = world.node.settlement
        order, signature = await _listed(world)
        receiver = ledger.deploy(ReentrantReceiver(ledger, "sneaky", settlement, order, signature))
        await world.run_gate(settlement, "set_fee_receiver", receiver.address)
        seller, buyer = world.accounts["seller"], world.accounts["buyer"]
        await ledger.mint_native(buyer, PRICE)

        with pytest.raises(PaymentFailed):
            await ledger.transact(buyer, settlement.execute_order, order, signature, value=PRICE)
        assert await ledger.balance_of(buyer) == PRICE
        assert await ledger.query(buyer, world.asset.owner_of, TOKEN) == seller

    @pytest.mark.asyncio
    async def test_inactive_settlement(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        await world.run_gate(world.node.settlement, "set_active", False)
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, PRICE)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(buyer, world.node.settlement.execute_order, order, signature, value=PRICE)
        assert exc.value.code == "EngineInactive"

    @pytest.mark.asyncio
    async def test_inactive_settlement_refuses_cancellation(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        settlement = world.node.settlement
        seller = world.accounts["seller"]
        await world.run_gate(settlement, "set_active", False)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(seller, settlement.cancel_order, order, signature)
        assert exc.value.code == "EngineInactive"
        assert not await world.ledger.query(seller, settlement.is_cancelled, settlement.hash_of(order))


class TestCancellation:
    """Cancelling an intent is terminal."""

    @pytest.mark.asyncio
    async def test_cancelled_order_cannot_execute(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        settlement = world.node.settlement
        seller, buyer = world.accounts["seller"], world.accounts["buyer"]

        digest = await world.ledger.transact(seller, settlement.cancel_order, order, signature)
        assert await world.ledger.query(buyer, settlement.is_cancelled, digest)
        await world.ledger.mint_native(buyer, PRICE)
        with pytest.raises(StateConflictError) as exc:
            await world.ledger.transact(buyer, settlement.execute_order, order, signature, value=PRICE)
        assert exc.value.code == "IntentCancelled"
        with pytest.raises(StateConflictError):
            await world.ledger.transact(seller, settlement.cancel_order, order, signature)
        names = [event["name"] for event in await world.storage.list_events()]
        assert names.count(ORDER_CANCELLED) == 1

    @pytest.mark.asyncio
    async def test_only_principal_cancels(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(
                world.accounts["carol"], world.node.settlement.cancel_order, order, signature
            )
        assert exc.value.code == "InvalidCaller"

    @pytest.mark.asyncio
    async def test_cannot_cancel_consumed_nonce(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, PRICE)
        await world.ledger.transact(buyer, world.node.settlement.execute_order, order, signature, value=PRICE)
        with pytest.raises(StateConflictError) as exc:
            await world.ledger.transact(
                world.accounts["seller"], world.node.settlement.cancel_order, order, signature
            )
        assert exc.value.code == "NonceAlreadyUsed"

    @pytest.mark.asyncio
    async def test_cancel_rejects_native_value(self, make_world):
        world = await make_world()
        order, signature = await _listed(world)
        settlement = world.node.settlement
        seller = world.accounts["seller"]
        await world.ledger.mint_native(seller, 10)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(seller, settlement.cancel_order, order, signature, value=10)
        assert exc.value.code == "InvalidValue"
        assert await world.ledger.balance_of(seller) == 10
        assert await world.ledger.balance_of(settlement.address) == 0
        assert not await world.ledger.query(seller, settlement.is_cancelled, settlement.hash_of(order))


class TestOffers:
    """Seller executes a buyer-signed offer paid in the settlement currency."""

    async def _offer(self, world, *, allowance=PRICE, nonce=7):
        buyer, seller = world.accounts["buyer"], world.accounts["seller"]
        node = world.node
        await world.mint_token(seller, TOKEN)
        await world.ledger.transact(seller, world.asset.approve, node.settlement.address, TOKEN)
        await world.ledger.transact(world.accounts["admin"], node.currency.mint, buyer, 5000)
        await world.ledger.transact(buyer, node.currency.approve, node.settlement.address, allowance)
        offer = Offer(
            buyer=buyer,
            collection_id=COLLECTION_ID,
            token_id=TOKEN,
            price=PRICE,
            nonce=nonce,
            expiry=world.clock.now + 3600,
        )
        return offer, sign_intent(node.settlement.domain, offer, world.keys["buyer"])

    @pytest.mark.asyncio
    async def test_offer_pulls_currency(self, make_world):
        world = await make_world()
        offer, signature = await self._offer(world)
        node = world.node
        await world.ledger.transact(world.accounts["seller"], node.settlement.execute_offer, offer, signature)

        currency = node.currency
        balance = lambda name: world.ledger.query(name, currency.balance_of, world.accounts[name])
        assert await balance("seller") == 925
        assert await balance("royalty") == 50
        assert await balance("fee") == 25
        assert await balance("buyer") == 4000
        assert await world.ledger.query(world.accounts["buyer"], world.asset.owner_of, TOKEN) == offer.buyer

    @pytest.mark.asyncio
    async def test_offer_rejects_native_value(self, make_world):
        world = await make_world()
        offer, signature = await self._offer(world)
        seller = world.accounts["seller"]
        await world.ledger.mint_native(seller, 10)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(seller, world.node.settlement.execute_offer, offer, signature, value=10)
        assert exc.value.code == "InvalidValue"

    @pytest.mark.asyncio
    async def test_cancelled_offer_cannot_execute(self, make_world):
        world = await make_world()
        offer, signature = await self._offer(world)
        settlement = world.node.settlement
        buyer, seller = world.accounts["buyer"], world.accounts["seller"]

        digest = await world.ledger.transact(buyer, settlement.cancel_offer, offer, signature)
        assert await world.ledger.query(seller, settlement.is_cancelled, digest)
        with pytest.raises(StateConflictError) as exc:
            await world.ledger.transact(seller, settlement.execute_offer, offer, signature)
        assert exc.value.code == "IntentCancelled"
        assert await world.ledger.query(seller, world.asset.owner_of, TOKEN) == seller

    @pytest.mark.asyncio
    async def test_offer_replay_rejected(self, make_world):
        world = await make_world()
        offer, signature = await self._offer(world)
        settlement = world.node.settlement
        seller = world.accounts["seller"]
        await world.ledger.transact(seller, settlement.execute_offer, offer, signature)
        with pytest.raises(StateConflictError) as exc:
            await world.ledger.transact(seller, settlement.execute_offer, offer, signature)
        assert exc.value.code == "NonceAlreadyUsed"
        balance = await world.ledger.query(seller, world.node.currency.balance_of, offer.buyer)
        assert balance == 4000

    @pytest.mark.asyncio
    async def test_offer_without_allowance(self, make_world):
        world = await make_world()
        offer, signature = await self._offer(world, allowance=PRICE - 1)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.transact(
                world.accounts["seller"], world.node.settlement.execute_offer, offer, signature
            )
        assert exc.value.code == "InsufficientPayment"

    @pytest.mark.asyncio
    async def test_create_offer_rejects_owner(self, make_world):
        world = await make_world()
        seller = world.accounts["seller"]
        await world.mint_token(seller, TOKEN)
        with pytest.raises(ValidationError) as exc:
            await world.ledger.query(
                seller, world.node.settlement.create_offer, COLLECTION_ID, TOKEN, PRICE, 1, world.clock.now + 10
            )
        assert exc.value.code == "InvalidOfferOperation"


class TestConstructionAids:
    @pytest.mark.asyncio
    async def test_put_token_on_sale_returns_signable_order(self, make_world):
        world = await make_world()
        seller = world.accounts["seller"]
        settlement = world.node.settlement
        await world.mint_token(seller, TOKEN)
        await world.ledger.transact(seller, world.asset.approve, settlement.address, TOKEN)
        expiry = world.clock.now + 60
        result = await world.ledger.query(seller, settlement.put_token_on_sale, COLLECTION_ID, TOKEN, PRICE, 3, expiry)
        order = Order.from_dict(result["order"])
        assert order.seller == seller
        assert result["hash"] == settlement.hash_of(order)

    @pytest.mark.asyncio
    async def test_put_token_on_sale_requires_approval(self, make_world):
        world = await make_world()
        seller = world.accounts["seller"]
        await world.mint_token(seller, TOKEN)
        with pytest.raises(AuthorizationError) as exc:
            await world.ledger.query(
                seller, world.node.settlement.put_token_on_sale, COLLECTION_ID, TOKEN, PRICE, 3, world.clock.now + 60
            )
        assert exc.value.code == "AssetNotApproved"

    @pytest.mark.asyncio
    async def test_signature_is_bound_to_domain(self, make_world):
        """An order signed for another chain does not verify here."""
        world = await make_world()
        order, _ = await _listed(world)
        settlement = world.node.settlement
        foreign = Domain(chain_id=settlement.domain.chain_id + 1, verifying_contract=settlement.address)
        assert intent_hash(foreign, order) != settlement.hash_of(order)
        signature = sign_intent(foreign, order, world.keys["seller"])
        buyer = world.accounts["buyer"]
        await world.ledger.mint_native(buyer, PRICE)
        with pytest.raises(AuthorizationError):
            await world.ledger.transact(buyer, settlement.execute_order, order, signature, value=PRICE)
