"""Auction lifecycle finite state machine."""

from __future__ import annotations

from enum import Enum

from ..errors import StateConflictError


class AuctionState(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class AuctionEvent(str, Enum):
    OPENED = "opened"
    DEADLINE_PASSED = "deadline_passed"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    (AuctionState.CREATED, AuctionEvent.OPENED): AuctionState.ACTIVE,
    (AuctionState.ACTIVE, AuctionEvent.DEADLINE_PASSED): AuctionState.FINALIZING,
    (AuctionState.ACTIVE, AuctionEvent.CANCELLED): AuctionState.CANCELLED,
    (AuctionState.FINALIZING, AuctionEvent.FINALIZED): AuctionState.SETTLED,
}

TERMINAL_STATES = frozenset({AuctionState.SETTLED, AuctionState.CANCELLED})


def transition(current: AuctionState, event: AuctionEvent) -> AuctionState:
    try:
        return _TRANSITIONS[(current, event)]
    except KeyError as exc:
        raise StateConflictError(
            "InvalidTransition", f"invalid transition from {current.value} via {event.value}"
        ) from exc


def state_at(*, terminal: str | None, deadline: int, now: int) -> AuctionState:
    """Derive the lifecycle state of an opened auction from its persisted fields."""
    if terminal:
        return AuctionState(terminal)
    if now > deadline:
        return AuctionState.FINALIZING
    return AuctionState.ACTIVE
