"""Collection registry: resolves a collection id to its asset contract."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml

from ..errors import ValidationError
from ..ledger.contracts import Contract
from ..ledger.state import CallContext, Ledger
from .contract import AssetContract

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    collection_id: int
    asset_address: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.asset_address is not None


class AssetRegistry(Contract):
    kind = "registry"

    async def initialize(self, ctx: CallContext) -> None:
        if await self._load(ctx, "admin"):
            raise ValidationError("AlreadyInitialized", "registry already initialized")
        self._store(ctx, "admin", ctx.sender)

    async def register(self, ctx: CallContext, collection_id: int, asset_address: str) -> None:
        await self._require_admin(ctx)
        if collection_id < 0:
            raise ValidationError("InvalidCollection", "collection id cannot be negative")
        if self.ledger.contract_at(asset_address) is None:
            raise ValidationError("InvalidCollection", f"no contract at {asset_address}")
        self._store(ctx, f"collection:{collection_id}", asset_address)

    async def resolve(self, ctx: CallContext, collection_id: int) -> Resolution:
        address = await self._load(ctx, f"collection:{collection_id}")
        if address is None:
            return Resolution(collection_id, error="collection is not registered")
        if self.ledger.contract_at(address) is None:
            return Resolution(collection_id, error=f"no contract deployed at {address}")
        return Resolution(collection_id, asset_address=address)

    async def collections(self, ctx: CallContext) -> dict[int, str]:
        entries = await ctx.tx.scan(self.namespace)
        return {
            int(key.split(":", 1)[1]): value
            for key, value in entries.items()
            if key.startswith("collection:")
        }


@dataclass(frozen=True)
class CollectionSeed:
    collection_id: int
    label: str
    admin: str
    royalty_receiver: str | None = None
    royalty_bps: int = 0


def load_collection_seeds(path: Path) -> list[CollectionSeed]:
    if not path.exists():
        return []
    data = yaml.safe_load(path.read_text()) or {}
    seeds = []
    for item in data.get("collections") or []:
        seeds.append(
            CollectionSeed(
                collection_id=int(item["id"]),
                label=str(item.get("label") or f"collection-{item['id']}"),
                admin=str(item["admin"]).lower(),
                royalty_receiver=(item.get("royalty_receiver") or None),
                royalty_bps=int(item.get("royalty_bps", 0)),
            )
        )
    return seeds


async def seed_collections(
    ledger: Ledger,
    registry: AssetRegistry,
    registry_admin: str,
    seeds: Iterable[CollectionSeed],
) -> list[AssetContract]:
    deployed = []
    for seed in seeds:
        asset = ledger.deploy(AssetContract(ledger, f"asset-{seed.label}"))
        receiver = seed.royalty_receiver.lower() if seed.royalty_receiver else None
        await ledger.transact(seed.admin, asset.initialize, receiver, seed.royalty_bps)
        await ledger.transact(registry_admin, registry.register, seed.collection_id, asset.address)
        logger.info("registered collection %s (%s) at %s", seed.collection_id, seed.label, asset.address)
        deployed.append(asset)
    return deployed
