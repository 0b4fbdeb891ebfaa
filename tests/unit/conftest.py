"""Shared fixtures: an in-process node with one registered collection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from marketplace.assets.contract import AssetContract
from marketplace.config import parse_server_config
from marketplace.node import Marketplace, build_marketplace
from marketplace.storage.in_memory import InMemoryStorage
from marketplace.transport.signatures import generate_keypair

UNIT = 10**18
COLLECTION_ID = 1
ROYALTY_BPS = 500
FEE_BPS = 250
GATE_DELAY = 100


class FakeClock:
    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@dataclass
class World:
    node: Marketplace
    clock: FakeClock
    storage: InMemoryStorage
    asset: AssetContract
    keys: dict[str, Any] = field(default_factory=dict)
    accounts: dict[str, str] = field(default_factory=dict)

    @property
    def ledger(self):
        return self.node.ledger

    async def mint_token(self, owner: str, token_id: int) -> None:
        await self.ledger.transact(self.accounts["admin"], self.asset.mint, owner, token_id)

    async def run_gate(self, target: Any, method: str, *args: Any) -> Any:
        """Propose, approve to quorum, wait out the delay and execute."""
        gate = self.node.gate
        action_id = await self.ledger.transact(
            self.accounts["member1"], gate.propose, target.address, method, list(args)
        )
        await self.ledger.transact(self.accounts["member2"], gate.approve, action_id)
        self.clock.advance(GATE_DELAY)
        return await self.ledger.transact(self.accounts["member1"], gate.execute, action_id)


ACCOUNT_NAMES = (
    "admin",
    "seller",
    "buyer",
    "alice",
    "bob",
    "carol",
    "member1",
    "member2",
    "royalty",
    "fee",
)


def build_config(accounts: dict[str, str], **overrides: Any):
    data = {
        "ledger": {"backend": "in_memory", "chain_id": 7},
        "settlement": {"fee_bps": FEE_BPS, "fee_receiver": accounts["fee"], "floor_price": 10},
        "auction": {
            "fee_bps": FEE_BPS,
            "fee_receiver": accounts["fee"],
            "floor_price": 10,
            "min_duration": 3600,
            "max_duration": 7 * 86400,
            "min_next_bid_percent": 5,
            "extension_window": 600,
        },
        "governance": {
            "members": [accounts["member1"], accounts["member2"]],
            "quorum": 2,
            "delay_seconds": GATE_DELAY,
        },
        "operator": {"id": "test-node", "admin": accounts["admin"]},
    }
    for section, values in overrides.items():
        data[section] = {**data.get(section, {}), **values}
    return parse_server_config(data)


async def build_world(**overrides: Any) -> World:
    keys = {}
    accounts = {}
    for name in ACCOUNT_NAMES:
        keys[name], accounts[name] = generate_keypair()
    clock = FakeClock()
    storage = InMemoryStorage()
    node = await build_marketplace(build_config(accounts, **overrides), storage, clock=clock)
    ledger = node.ledger
    asset = ledger.deploy(AssetContract(ledger, "asset-art"))
    await ledger.transact(accounts["admin"], asset.initialize, accounts["royalty"], ROYALTY_BPS)
    await ledger.transact(accounts["admin"], node.registry.register, COLLECTION_ID, asset.address)
    return World(node=node, clock=clock, storage=storage, asset=asset, keys=keys, accounts=accounts)


@pytest.fixture
def make_world():
    """Async factory; call ``await make_world()`` inside a test."""
    return build_world
