"""Winner selection helpers."""

from __future__ import annotations

from typing import Iterable, Optional

from .models import Bid


def select_winner(bids: Iterable[Bid]) -> Optional[tuple[int, Bid]]:
    """Return ``(index, bid)`` of the first entry holding the maximum amount.

    ``max`` keeps the first maximal element, so an equal amount placed later
    never displaces an earlier entry.
    """
    return max(enumerate(bids), key=lambda item: item[1].amount, default=None)


def is_strict_maximum(bids: Iterable[Bid], bidder: str) -> bool:
    """True when ``bidder``'s entry is larger than every other entry."""
    own = None
    others = []
    for bid in bids:
        if bid.bidder == bidder:
            own = bid.amount
        else:
            others.append(bid.amount)
    return own is not None and all(amount < own for amount in others)


def minimum_next_bid(highest: int, percent: int) -> int:
    return highest + highest * percent // 100
