"""Unique-token asset contract consumed by the settlement engine.

Issuance and reveal belong to the collection owner; this reference contract
keeps only what the engine consumes (ownership, approvals, transfer with
recipient notification, royalty info) plus an admin-only ``mint``.
"""

from __future__ import annotations

from typing import Protocol

from ..errors import AuthorizationError, TransferFailureError, ValidationError
from ..ledger.billing import MAX_ROYALTY_BPS, royalty_amount
from ..ledger.contracts import Contract
from ..ledger.state import CallContext


class AssetProtocol(Protocol):
    address: str

    async def owner_of(self, ctx: CallContext, token_id: int) -> str | None: ...

    async def is_approved(self, ctx: CallContext, token_id: int, operator: str) -> bool: ...

    async def transfer(self, ctx: CallContext, from_: str, to: str, token_id: int) -> None: ...

    async def royalty_info(
        self, ctx: CallContext, token_id: int, price: int
    ) -> tuple[str | None, int]: ...


class AssetContract(Contract):
    kind = "asset"

    async def initialize(
        self, ctx: CallContext, royalty_receiver: str | None = None, royalty_bps: int = 0
    ) -> None:
        if await self._load(ctx, "admin"):
            raise AuthorizationError("AlreadyInitialized", f"{self.label} already initialized")
        self._store(ctx, "admin", ctx.sender)
        await self._write_royalty(ctx, royalty_receiver, royalty_bps)

    async def set_royalty(self, ctx: CallContext, receiver: str | None, royalty_bps: int) -> None:
        await self._require_admin(ctx)
        await self._write_royalty(ctx, receiver, royalty_bps)

    async def _write_royalty(self, ctx: CallContext, receiver: str | None, royalty_bps: int) -> None:
        if not 0 <= royalty_bps <= MAX_ROYALTY_BPS:
            raise ValidationError("InvalidRoyalty", f"royalty {royalty_bps} out of range")
        if receiver:
            self._store(ctx, "royalty_receiver", receiver)
        else:
            self._drop(ctx, "royalty_receiver")
        self._store(ctx, "royalty_bps", royalty_bps)

    async def mint(self, ctx: CallContext, to: str, token_id: int) -> None:
        await self._require_admin(ctx)
        if await self.owner_of(ctx, token_id) is not None:
            raise ValidationError("TokenExists", f"token {token_id} already minted")
        self._store(ctx, f"owner:{token_id}", to)
        self._store_int(ctx, "supply", await self._load_int(ctx, "supply") + 1)

    async def owner_of(self, ctx: CallContext, token_id: int) -> str | None:
        return await self._load(ctx, f"owner:{token_id}")

    async def approve(self, ctx: CallContext, operator: str, token_id: int) -> None:
        owner = await self.owner_of(ctx, token_id)
        if owner is None:
            raise ValidationError("TokenDoesNotExist", f"token {token_id} does not exist")
        if ctx.sender != owner and not await self._is_operator(ctx, owner, ctx.sender):
            raise AuthorizationError("NotTokenOwner", f"{ctx.sender} cannot approve token {token_id}")
        self._store(ctx, f"approved:{token_id}", operator)

    async def set_approval_for_all(self, ctx: CallContext, operator: str, approved: bool) -> None:
        key = f"operator:{ctx.sender}:{operator}"
        if approved:
            self._store(ctx, key, True)
        else:
            self._drop(ctx, key)

    async def is_approved(self, ctx: CallContext, token_id: int, operator: str) -> bool:
        owner = await self.owner_of(ctx, token_id)
        if owner is None:
            return False
        if await self._load(ctx, f"approved:{token_id}") == operator:
            return True
        return await self._is_operator(ctx, owner, operator)

    async def _is_operator(self, ctx: CallContext, owner: str, operator: str) -> bool:
        return bool(await self._load(ctx, f"operator:{owner}:{operator}", False))

    async def transfer(self, ctx: CallContext, from_: str, to: str, token_id: int) -> None:
        owner = await self.owner_of(ctx, token_id)
        if owner is None or owner != from_:
            raise TransferFailureError(
                "AssetTransferFailed", f"token {token_id} is not owned by {from_}"
            )
        if ctx.sender != owner and not await self.is_approved(ctx, token_id, ctx.sender):
            raise TransferFailureError(
                "AssetTransferFailed", f"{ctx.sender} is not approved for token {token_id}"
            )
        self._drop(ctx, f"approved:{token_id}")
        self._store(ctx, f"owner:{token_id}", to)
        recipient = self.ledger.contract_at(to)
        if recipient is None:
            return
        hook = getattr(recipient, "on_asset_received", None)
        accepted = False
        if hook is not None:
            accepted = await hook(
                ctx.derive(sender=self.address, target=to), ctx.sender, from_, token_id
            )
        if not accepted:
            raise TransferFailureError(
                "AssetTransferFailed", f"recipient {to} rejected token {token_id}"
            )

    async def royalty_info(self, ctx: CallContext, token_id: int, price: int) -> tuple[str | None, int]:
        receiver = await self._load(ctx, "royalty_receiver")
        if receiver is None:
            return None, 0
        rate = int(await self._load(ctx, "royalty_bps", 0))
        return receiver, royalty_amount(price, rate)
