"""Wires the ledger components of one settlement node together."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .assets.contract import AssetContract
from .assets.currency import SettlementCurrency
from .assets.registry import AssetRegistry, CollectionSeed, load_collection_seeds, seed_collections
from .auction.engine import AuctionEngine
from .config import ServerConfig
from .events.publisher import EventPublisher
from .governance.gate import GovernanceGate
from .ledger.state import Ledger, contract_address
from .settlement.protocol import SettlementProtocol
from .storage import StateStorage
from .transport.timestamps import Clock, system_clock

logger = logging.getLogger(__name__)


@dataclass
class Marketplace:
    ledger: Ledger
    admin: str
    gate: GovernanceGate
    registry: AssetRegistry
    currency: SettlementCurrency
    settlement: SettlementProtocol
    auction: AuctionEngine
    assets: list[AssetContract] = field(default_factory=list)

    def component(self, name: str):
        return {
            "gate": self.gate,
            "registry": self.registry,
            "currency": self.currency,
            "settlement": self.settlement,
            "auction": self.auction,
        }.get(name)


def operator_address(config: ServerConfig) -> str:
    return config.operator.admin or contract_address(f"operator:{config.operator.operator_id}")


async def build_marketplace(
    config: ServerConfig,
    storage: StateStorage,
    *,
    publisher: EventPublisher | None = None,
    clock: Clock = system_clock,
    collections_path: Path | None = None,
) -> Marketplace:
    """Deploy every component, initializing them on first start only."""
    ledger = Ledger(storage, clock=clock, chain_id=config.ledger.chain_id, publisher=publisher)
    admin = operator_address(config)
    node = Marketplace(
        ledger=ledger,
        admin=admin,
        gate=ledger.deploy(GovernanceGate(ledger, "gate")),
        registry=ledger.deploy(AssetRegistry(ledger, "registry")),
        currency=ledger.deploy(SettlementCurrency(ledger, "currency")),
        settlement=ledger.deploy(SettlementProtocol(ledger, "settlement")),
        auction=ledger.deploy(AuctionEngine(ledger, "auction")),
    )
    seeds: list[CollectionSeed] = load_collection_seeds(collections_path) if collections_path else []

    if await storage.get(node.gate.namespace, "members") is not None:
        logger.info("ledger state found; re-attaching %d collections", len(seeds))
        for seed in seeds:
            node.assets.append(ledger.deploy(AssetContract(ledger, f"asset-{seed.label}")))
        return node

    governance = config.governance
    members = governance.members or (admin,)
    quorum = min(governance.quorum, len(members))
    await ledger.transact(admin, node.gate.initialize, members, quorum, governance.delay_seconds)
    await ledger.transact(admin, node.registry.initialize)
    await ledger.transact(admin, node.currency.initialize, config.operator.currency_symbol)
    await ledger.transact(
        admin,
        node.settlement.initialize,
        gate=node.gate.address,
        registry=node.registry.address,
        currency=node.currency.address,
        fee_bps=config.settlement.fee_bps,
        fee_receiver=(config.settlement.fee_receiver or admin).lower(),
        floor_price=config.settlement.floor_price,
    )
    auction = config.auction
    await ledger.transact(
        admin,
        node.auction.initialize,
        gate=node.gate.address,
        registry=node.registry.address,
        fee_bps=auction.fee_bps,
        fee_receiver=(auction.fee_receiver or admin).lower(),
        floor_price=auction.floor_price,
        min_duration=auction.min_duration,
        max_duration=auction.max_duration,
        min_next_bid_percent=auction.min_next_bid_percent,
        extension_window=auction.extension_window,
    )
    node.assets.extend(await seed_collections(ledger, node.registry, admin, seeds))
    logger.info(
        "marketplace initialized: gate=%s settlement=%s auction=%s",
        node.gate.address,
        node.settlement.address,
        node.auction.address,
    )
    return node
