"""Ledger event records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

ORDER_EXECUTED = "OrderExecuted"
OFFER_EXECUTED = "OfferExecuted"
ORDER_CANCELLED = "OrderCancelled"
OFFER_CANCELLED = "OfferCancelled"
NONCE_CONSUMED = "NonceConsumed"
AUCTION_CREATED = "AuctionCreated"
BID_PLACED = "BidPlaced"
AUCTION_ENDED = "AuctionEnded"
BID_WITHDRAWN = "BidWithdrawn"
AUCTION_CANCELLED = "AuctionCancelled"
CONFIGURATION_UPDATED = "ConfigurationUpdated"
FEES_WITHDRAWN = "FeesWithdrawn"


@dataclass
class Event:
    name: str
    component: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0
    sequence: int = -1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
