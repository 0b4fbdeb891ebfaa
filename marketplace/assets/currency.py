"""Settlement currency token with a pull-payment allowance model."""

from __future__ import annotations

from typing import Protocol

from ..errors import AuthorizationError, TransferFailureError, ValidationError
from ..ledger.contracts import Contract
from ..ledger.state import CallContext


class CurrencyProtocol(Protocol):
    address: str

    async def balance_of(self, ctx: CallContext, owner: str) -> int: ...

    async def allowance(self, ctx: CallContext, owner: str, spender: str) -> int: ...

    async def transfer(self, ctx: CallContext, to: str, amount: int) -> None: ...

    async def transfer_from(self, ctx: CallContext, owner: str, to: str, amount: int) -> None: ...


class SettlementCurrency(Contract):
    kind = "currency"

    async def initialize(self, ctx: CallContext, symbol: str) -> None:
        if await self._load(ctx, "admin"):
            raise AuthorizationError("AlreadyInitialized", f"{self.label} already initialized")
        self._store(ctx, "admin", ctx.sender)
        self._store(ctx, "symbol", symbol)

    async def mint(self, ctx: CallContext, to: str, amount: int) -> None:
        await self._require_admin(ctx)
        if amount <= 0:
            raise ValidationError("InvalidAmount", "mint amount must be positive")
        self._store_int(ctx, f"balance:{to}", await self.balance_of(ctx, to) + amount)
        self._store_int(ctx, "supply", await self._load_int(ctx, "supply") + amount)

    async def balance_of(self, ctx: CallContext, owner: str) -> int:
        return await self._load_int(ctx, f"balance:{owner}")

    async def allowance(self, ctx: CallContext, owner: str, spender: str) -> int:
        return await self._load_int(ctx, f"allowance:{owner}:{spender}")

    async def approve(self, ctx: CallContext, spender: str, amount: int) -> None:
        if amount < 0:
            raise ValidationError("InvalidAmount", "allowance cannot be negative")
        self._store_int(ctx, f"allowance:{ctx.sender}:{spender}", amount)

    async def transfer(self, ctx: CallContext, to: str, amount: int) -> None:
        await self._move(ctx, ctx.sender, to, amount)

    async def transfer_from(self, ctx: CallContext, owner: str, to: str, amount: int) -> None:
        allowed = await self.allowance(ctx, owner, ctx.sender)
        if allowed < amount:
            raise TransferFailureError(
                "InsufficientAllowance", f"{ctx.sender} may spend {allowed} of {owner}, needs {amount}"
            )
        self._store_int(ctx, f"allowance:{owner}:{ctx.sender}", allowed - amount)
        await self._move(ctx, owner, to, amount)

    async def _move(self, ctx: CallContext, src: str, dst: str, amount: int) -> None:
        if amount < 0:
            raise TransferFailureError("InvalidAmount", "negative transfer")
        balance = await self.balance_of(ctx, src)
        if balance < amount:
            raise TransferFailureError(
                "InsufficientBalance", f"{src} holds {balance}, needs {amount}"
            )
        self._store_int(ctx, f"balance:{src}", balance - amount)
        self._store_int(ctx, f"balance:{dst}", await self.balance_of(ctx, dst) + amount)
