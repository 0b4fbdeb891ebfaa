"""Base class for components deployed on the ledger."""

from __future__ import annotations

from typing import Any

from ..errors import AuthorizationError, PaymentFailed, MarketplaceError
from ..events.models import Event
from .state import CallContext, Ledger, contract_address


class Contract:
    """A ledger component owning exactly one keyed-store namespace."""

    kind = "contract"
    # Entry points that accept attached native value; every other call rejects it.
    payable_methods: tuple[str, ...] = ()

    def __init__(self, ledger: Ledger, label: str) -> None:
        self.ledger = ledger
        self.label = label
        self.address = contract_address(label)
        self.namespace = f"{self.kind}:{label}"

    async def _load(self, ctx: CallContext, key: str, default: Any = None) -> Any:
        return await ctx.tx.get(self.namespace, key, default)

    async def _load_int(self, ctx: CallContext, key: str) -> int:
        return await ctx.tx.get_int(self.namespace, key)

    def _store(self, ctx: CallContext, key: str, value: Any) -> None:
        ctx.tx.set(self.namespace, key, value)

    def _store_int(self, ctx: CallContext, key: str, value: int) -> None:
        ctx.tx.set_int(self.namespace, key, value)

    def _drop(self, ctx: CallContext, key: str) -> None:
        ctx.tx.delete(self.namespace, key)

    def _emit(self, ctx: CallContext, name: str, **payload: Any) -> None:
        ctx.tx.emit(
            Event(name=name, component=self.label, payload=payload, timestamp=ctx.timestamp)
        )

    async def _pay(self, ctx: CallContext, recipient: str, amount: int) -> None:
        """Send native value held by this contract; any failure is a PaymentFailed."""
        if amount == 0:
            return
        try:
            await self.ledger.transfer_native(ctx, self.address, recipient, amount)
        except PaymentFailed:
            raise
        except MarketplaceError as exc:
            raise PaymentFailed(message=f"payment of {amount} to {recipient} failed: {exc}") from exc

    async def _require_admin(self, ctx: CallContext) -> None:
        admin = await self._load(ctx, "admin")
        if ctx.sender != admin:
            raise AuthorizationError("UnauthorizedCaller", f"{ctx.sender} is not the admin")
