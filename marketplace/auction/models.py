"""Shared auction data structures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator


@dataclass
class AuctionRecord:
    auction_id: int
    seller: str
    asset_address: str
    token_id: int
    floor_price: int
    deadline: int

    def to_state(self) -> dict[str, Any]:
        return {
            "seller": self.seller,
            "asset_address": self.asset_address,
            "token_id": self.token_id,
            "floor_price": str(self.floor_price),
            "deadline": self.deadline,
        }

    @classmethod
    def from_state(cls, auction_id: int, data: dict[str, Any]) -> "AuctionRecord":
        return cls(
            auction_id=auction_id,
            seller=data["seller"],
            asset_address=data["asset_address"],
            token_id=int(data["token_id"]),
            floor_price=int(data["floor_price"]),
            deadline=int(data["deadline"]),
        )


@dataclass
class Bid:
    bidder: str
    amount: int

    def to_dict(self) -> dict[str, str]:
        return {"bidder": self.bidder, "amount": str(self.amount)}


class BidBook:
    """Bids of one auction, one cumulative entry per bidder.

    Entries live in an index-addressed list. Removal swaps the last entry into
    the removed slot and truncates, so it is O(1) but iteration order is not
    stable across removals.
    """

    def __init__(self, bids: list[Bid] | None = None) -> None:
        self._bids: list[Bid] = list(bids or [])

    @classmethod
    def from_state(cls, raw: list[list[str]] | None) -> "BidBook":
        return cls([Bid(bidder=bidder, amount=int(amount)) for bidder, amount in raw or []])

    def to_state(self) -> list[list[str]]:
        return [[bid.bidder, str(bid.amount)] for bid in self._bids]

    def __len__(self) -> int:
        return len(self._bids)

    def __iter__(self) -> Iterator[Bid]:
        return iter(self._bids)

    def __getitem__(self, index: int) -> Bid:
        return self._bids[index]

    def index_of(self, bidder: str) -> int | None:
        for index, bid in enumerate(self._bids):
            if bid.bidder == bidder:
                return index
        return None

    def amount_of(self, bidder: str) -> int:
        index = self.index_of(bidder)
        return 0 if index is None else self._bids[index].amount

    def add(self, bidder: str, amount: int) -> Bid:
        index = self.index_of(bidder)
        if index is None:
            bid = Bid(bidder=bidder, amount=amount)
            self._bids.append(bid)
            return bid
        self._bids[index].amount += amount
        return self._bids[index]

    def remove_at(self, index: int) -> Bid:
        removed = self._bids[index]
        last = self._bids.pop()
        if index < len(self._bids):
            self._bids[index] = last
        return removed
