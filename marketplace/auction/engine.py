"""Auction engine: escrowed, time-boxed auctions with anti-sniping extension."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import AuthorizationError, StateConflictError, ValidationError
from ..events.models import (
    AUCTION_CANCELLED,
    AUCTION_CREATED,
    AUCTION_ENDED,
    BID_PLACED,
    BID_WITHDRAWN,
    FEES_WITHDRAWN,
)
from ..governance.gate import GovernedContract
from ..ledger.billing import split_payment
from ..ledger.fsm import AuctionEvent, AuctionState, state_at, transition
from ..ledger.state import CallContext, non_reentrant
from .models import AuctionRecord, BidBook
from .selection import is_strict_maximum, minimum_next_bid, select_winner

logger = logging.getLogger(__name__)


class AuctionEngine(GovernedContract):
    kind = "auction"
    payable_methods = ("make_a_bid", "on_native_received")

    governed_methods = GovernedContract.governed_methods + (
        "set_auction_parameters",
        "withdraw",
    )

    async def initialize(
        self,
        ctx: CallContext,
        *,
        gate: str,
        registry: str,
        fee_bps: int,
        fee_receiver: str,
        floor_price: int,
        min_duration: int,
        max_duration: int,
        min_next_bid_percent: int,
        extension_window: int,
    ) -> None:
        await self._configure(
            ctx,
            gate=gate,
            registry=registry,
            fee_bps=fee_bps,
            fee_receiver=fee_receiver,
            floor_price=floor_price,
        )
        self._write_parameters(ctx, min_duration, max_duration, min_next_bid_percent, extension_window)

    def _write_parameters(
        self,
        ctx: CallContext,
        min_duration: int,
        max_duration: int,
        min_next_bid_percent: int,
        extension_window: int,
    ) -> None:
        if not 0 < min_duration <= max_duration:
            raise ValidationError("InvalidDuration", f"bad duration bounds [{min_duration}, {max_duration}]")
        if not 0 <= min_next_bid_percent <= 100:
            raise ValidationError("InvalidIncrement", f"bad bid increment {min_next_bid_percent}%")
        if extension_window < 0:
            raise ValidationError("InvalidDuration", "extension window cannot be negative")
        self._store(ctx, "min_duration", min_duration)
        self._store(ctx, "max_duration", max_duration)
        self._store(ctx, "min_next_bid_percent", min_next_bid_percent)
        self._store(ctx, "extension_window", extension_window)

    async def set_auction_parameters(
        self,
        ctx: CallContext,
        min_duration: int,
        max_duration: int,
        min_next_bid_percent: int,
        extension_window: int,
    ) -> None:
        await self._require_gate(
            ctx,
            "set_auction_parameters",
            min_duration,
            max_duration,
            min_next_bid_percent,
            extension_window,
        )
        self._write_parameters(ctx, min_duration, max_duration, min_next_bid_percent, extension_window)
        self._config_updated(
            ctx,
            "auction_parameters",
            [min_duration, max_duration, min_next_bid_percent, extension_window],
        )

    async def parameters(self, ctx: CallContext) -> dict[str, int]:
        return {
            "min_duration": int(await self._load(ctx, "min_duration", 0)),
            "max_duration": int(await self._load(ctx, "max_duration", 0)),
            "min_next_bid_percent": int(await self._load(ctx, "min_next_bid_percent", 0)),
            "extension_window": int(await self._load(ctx, "extension_window", 0)),
        }

    # Custody hooks -----------------------------------------------------------

    async def on_asset_received(
        self, ctx: CallContext, operator: str, from_: str, token_id: int
    ) -> bool:
        # Only escrow pulls initiated by the engine itself are accepted.
        return operator == self.address

    async def on_native_received(self, ctx: CallContext) -> None:
        logger.info("auction engine received %s from %s", ctx.value, ctx.sender)

    # Lifecycle ---------------------------------------------------------------

    async def put_token_on_auction(
        self,
        ctx: CallContext,
        collection_id: int,
        token_id: int,
        duration: int,
        minimum_bid: int,
    ) -> int:
        async with non_reentrant(ctx, self.address):
            await self._require_active(ctx)
            params = await self.parameters(ctx)
            if not params["min_duration"] <= duration <= params["max_duration"]:
                raise ValidationError(
                    "InvalidDuration",
                    f"duration {duration} outside [{params['min_duration']}, {params['max_duration']}]",
                )
            if minimum_bid < await self._load_int(ctx, "floor_price"):
                raise ValidationError("IncorrectPrice", f"minimum bid {minimum_bid} is below the floor")
            asset = await self._resolve_asset(ctx, collection_id)
            if await asset.owner_of(ctx, token_id) != ctx.sender:
                raise ValidationError("NotTokenOwner", f"{ctx.sender} does not own token {token_id}")
            if not await asset.is_approved(ctx, token_id, self.address):
                raise AuthorizationError("AssetNotApproved", f"token {token_id} is not approved for the engine")

            auction_id = await self._load_int(ctx, "last_auction_id") + 1
            record = AuctionRecord(
                auction_id=auction_id,
                seller=ctx.sender,
                asset_address=asset.address,
                token_id=token_id,
                floor_price=minimum_bid,
                deadline=ctx.timestamp + duration,
            )
            transition(AuctionState.CREATED, AuctionEvent.OPENED)
            self._store_int(ctx, "last_auction_id", auction_id)
            self._store(ctx, f"auction:{auction_id}", record.to_state())
            await asset.transfer(
                ctx.derive(sender=self.address, target=asset.address),
                ctx.sender,
                self.address,
                token_id,
            )
            self._emit(
                ctx,
                AUCTION_CREATED,
                auction_id=auction_id,
                seller=ctx.sender,
                asset_address=asset.address,
                token_id=token_id,
                floor_price=str(minimum_bid),
                deadline=record.deadline,
            )
            logger.info("auction %s opened for token %s until %s", auction_id, token_id, record.deadline)
            return auction_id

    async def make_a_bid(self, ctx: CallContext, auction_id: int) -> dict[str, Any]:
        async with non_reentrant(ctx, self.address):
            await self._require_active(ctx)
            record = await self._open_record(ctx, auction_id)
            if ctx.timestamp > record.deadline:
                raise ValidationError("AuctionEnded", f"auction {auction_id} closed at {record.deadline}")
            if ctx.sender == record.seller:
                raise ValidationError("InvalidCaller", "seller cannot bid on their own auction")
            if ctx.value <= 0:
                raise ValidationError("InsufficientPayment", "a bid needs attached value")

            book = await self._book(ctx, auction_id)
            leader = select_winner(book)
            prior = book.amount_of(ctx.sender)
            if leader is None:
                required = record.floor_price
            else:
                percent = int(await self._load(ctx, "min_next_bid_percent", 0))
                required = minimum_next_bid(leader[1].amount, percent) - prior
            if ctx.value < required:
                raise ValidationError(
                    "InsufficientPayment", f"bid of {ctx.value} is below the required {required}"
                )

            bid = book.add(ctx.sender, ctx.value)
            extended = is_strict_maximum(book, ctx.sender)
            if extended:
                record.deadline += int(await self._load(ctx, "extension_window", 0))
            self._store(ctx, f"auction:{auction_id}", record.to_state())
            self._store(ctx, f"bids:{auction_id}", book.to_state())
            self._store_int(ctx, "escrow_total", await self._load_int(ctx, "escrow_total") + ctx.value)
            self._emit(
                ctx,
                BID_PLACED,
                auction_id=auction_id,
                bidder=ctx.sender,
                amount=str(ctx.value),
                total=str(bid.amount),
                deadline=record.deadline,
                extended=extended,
            )
            return {"auction_id": auction_id, "total": bid.amount, "deadline": record.deadline, "extended": extended}

    async def finalize_auction(self, ctx: CallContext, auction_id: int) -> dict[str, Any]:
        async with non_reentrant(ctx, self.address):
            record = await self._open_record(ctx, auction_id)
            state = state_at(terminal=None, deadline=record.deadline, now=ctx.timestamp)
            if state is not AuctionState.FINALIZING:
                raise ValidationError("AuctionStillOpen", f"auction {auction_id} runs until {record.deadline}")
            final_state = transition(state, AuctionEvent.FINALIZED)

            book = await self._book(ctx, auction_id)
            winner = select_winner(book)
            self._finish(ctx, auction_id, final_state)
            asset = self.ledger.contract_at(record.asset_address)
            custody = ctx.derive(sender=self.address, target=record.asset_address)

            if winner is None:
                await asset.transfer(custody, self.address, record.seller, record.token_id)
                self._emit(ctx, AUCTION_ENDED, auction_id=auction_id, winner=None, amount="0")
                logger.info("auction %s ended without bids", auction_id)
                return {"auction_id": auction_id, "winner": None, "amount": 0}

            index, bid = winner
            book.remove_at(index)
            self._store_book(ctx, auction_id, book)
            self._store_int(ctx, "escrow_total", await self._load_int(ctx, "escrow_total") - bid.amount)
            await asset.transfer(custody, self.address, bid.bidder, record.token_id)

            receiver, raw_royalty = await asset.royalty_info(ctx, record.token_id, bid.amount)
            if receiver is None:
                raw_royalty = 0
            split = split_payment(bid.amount, raw_royalty, int(await self._load(ctx, "fee_bps", 0)))
            await self._pay(ctx, record.seller, split.proceeds)
            if receiver is not None:
                await self._pay(ctx, receiver, split.royalty)
            await self._pay(ctx, await self._load(ctx, "fee_receiver"), split.fee)
            self._emit(
                ctx,
                AUCTION_ENDED,
                auction_id=auction_id,
                winner=bid.bidder,
                amount=str(bid.amount),
                royalty=str(split.royalty),
                fee=str(split.fee),
            )
            logger.info("auction %s won by %s for %s", auction_id, bid.bidder, bid.amount)
            return {
                "auction_id": auction_id,
                "winner": bid.bidder,
                "amount": bid.amount,
                "proceeds": split.proceeds,
                "royalty": split.royalty,
                "fee": split.fee,
            }

    async def withdraw_auction_bid(self, ctx: CallContext, auction_id: int) -> int:
        async with non_reentrant(ctx, self.address):
            if not await self._terminal(ctx, auction_id):
                raise ValidationError("AuctionStillOpen", f"auction {auction_id} is not finalized")
            book = await self._book(ctx, auction_id)
            index = book.index_of(ctx.sender)
            if index is None:
                raise StateConflictError("UserBidNotFound", f"no bid from {ctx.sender} on auction {auction_id}")
            bid = book.remove_at(index)
            self._store_book(ctx, auction_id, book)
            self._store_int(ctx, "escrow_total", await self._load_int(ctx, "escrow_total") - bid.amount)
            await self._pay(ctx, ctx.sender, bid.amount)
            self._emit(ctx, BID_WITHDRAWN, auction_id=auction_id, bidder=ctx.sender, amount=str(bid.amount))
            return bid.amount

    async def cancel_auction(self, ctx: CallContext, auction_id: int) -> None:
        async with non_reentrant(ctx, self.address):
            record = await self._open_record(ctx, auction_id)
            if ctx.sender != record.seller:
                raise ValidationError("InvalidCaller", "only the seller can cancel an auction")
            state = state_at(terminal=None, deadline=record.deadline, now=ctx.timestamp)
            if state is not AuctionState.ACTIVE:
                raise ValidationError("AuctionEnded", f"auction {auction_id} closed at {record.deadline}")
            if len(await self._book(ctx, auction_id)):
                raise StateConflictError("BidsPresent", f"auction {auction_id} already has bids")
            self._finish(ctx, auction_id, transition(state, AuctionEvent.CANCELLED))
            asset = self.ledger.contract_at(record.asset_address)
            await asset.transfer(
                ctx.derive(sender=self.address, target=record.asset_address),
                self.address,
                record.seller,
                record.token_id,
            )
            self._emit(ctx, AUCTION_CANCELLED, auction_id=auction_id, seller=record.seller)

    async def withdraw(self, ctx: CallContext) -> int:
        """Sweep everything above the escrowed bids to the fee receiver."""
        async with non_reentrant(ctx, self.address):
            await self._require_gate(ctx, "withdraw")
            receiver = await self._load(ctx, "fee_receiver")
            if receiver == self.address:
                raise ValidationError("InvalidFeeReceiver", "fee receiver is the engine itself")
            balance = await self.ledger.native_balance(ctx, self.address)
            excess = balance - await self._load_int(ctx, "escrow_total")
            if excess <= 0:
                raise ValidationError("NothingToWithdraw", "no balance above escrowed bids")
            await self._pay(ctx, receiver, excess)
            self._emit(ctx, FEES_WITHDRAWN, receiver=receiver, amount=str(excess))
            return excess

    # Queries -----------------------------------------------------------------

    async def auction_info(self, ctx: CallContext, auction_id: int) -> dict[str, Any]:
        terminal = await self._terminal(ctx, auction_id)
        raw = await self._load(ctx, f"auction:{auction_id}")
        if raw is None:
            if terminal is None:
                raise ValidationError("AuctionNotFound", f"auction {auction_id} does not exist")
            return {
                "auction_id": auction_id,
                "seller": None,
                "asset_address": None,
                "token_id": None,
                "floor_price": 0,
                "deadline": 0,
                "finished": True,
                "state": terminal,
            }
        record = AuctionRecord.from_state(auction_id, raw)
        return {
            "auction_id": auction_id,
            "seller": record.seller,
            "asset_address": record.asset_address,
            "token_id": record.token_id,
            "floor_price": record.floor_price,
            "deadline": record.deadline,
            "finished": False,
            "state": state_at(terminal=None, deadline=record.deadline, now=ctx.timestamp).value,
        }

    async def bid_of(self, ctx: CallContext, auction_id: int, bidder: str) -> int:
        return (await self._book(ctx, auction_id)).amount_of(bidder)

    async def bids(self, ctx: CallContext, auction_id: int) -> list[dict[str, str]]:
        return [bid.to_dict() for bid in await self._book(ctx, auction_id)]

    async def highest_bid(self, ctx: CallContext, auction_id: int) -> dict[str, str] | None:
        winner = select_winner(await self._book(ctx, auction_id))
        return None if winner is None else winner[1].to_dict()

    async def next_minimum_bid(self, ctx: CallContext, auction_id: int) -> int:
        record = await self._open_record(ctx, auction_id)
        leader = select_winner(await self._book(ctx, auction_id))
        if leader is None:
            return record.floor_price
        percent = int(await self._load(ctx, "min_next_bid_percent", 0))
        return minimum_next_bid(leader[1].amount, percent)

    async def escrowed_total(self, ctx: CallContext) -> int:
        return await self._load_int(ctx, "escrow_total")

    async def last_auction_id(self, ctx: CallContext) -> int:
        return await self._load_int(ctx, "last_auction_id")

    # Helpers -----------------------------------------------------------------

    async def _require_active(self, ctx: CallContext) -> None:
        if not await self.is_active(ctx):
            raise ValidationError("EngineInactive", "auction engine is stopped")

    async def _terminal(self, ctx: CallContext, auction_id: int) -> str | None:
        return await self._load(ctx, f"finished:{auction_id}")

    async def _open_record(self, ctx: CallContext, auction_id: int) -> AuctionRecord:
        if await self._terminal(ctx, auction_id):
            raise StateConflictError("AuctionFinished", f"auction {auction_id} is finished")
        raw = await self._load(ctx, f"auction:{auction_id}")
        if raw is None:
            raise ValidationError("AuctionNotFound", f"auction {auction_id} does not exist")
        return AuctionRecord.from_state(auction_id, raw)

    async def _book(self, ctx: CallContext, auction_id: int) -> BidBook:
        return BidBook.from_state(await self._load(ctx, f"bids:{auction_id}"))

    def _store_book(self, ctx: CallContext, auction_id: int, book: BidBook) -> None:
        if len(book):
            self._store(ctx, f"bids:{auction_id}", book.to_state())
        else:
            self._drop(ctx, f"bids:{auction_id}")

    def _finish(self, ctx: CallContext, auction_id: int, state: AuctionState) -> None:
        self._store(ctx, f"finished:{auction_id}", state.value)
        self._drop(ctx, f"auction:{auction_id}")

    async def _resolve_asset(self, ctx: CallContext, collection_id: int):
        registry = self.ledger.contract_at(await self._load(ctx, "registry"))
        if registry is None:
            raise ValidationError("CollectionDoesNotExist", "no registry configured")
        resolution = await registry.resolve(ctx, collection_id)
        if not resolution.ok:
            raise ValidationError("CollectionDoesNotExist", f"collection {collection_id}: {resolution.error}")
        return self.ledger.contract_at(resolution.asset_address)
