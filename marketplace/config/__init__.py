"""Configuration helpers for the settlement node."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

_DEFAULT_SERVER_CONFIG = Path(__file__).resolve().parent / "server.yaml"
_DEFAULT_COLLECTIONS_CONFIG = Path(__file__).resolve().parent / "collections.yaml"


@dataclass(frozen=True)
class TransportConfig:
    nonce_ttl_seconds: int
    max_clock_skew_ms: int


@dataclass(frozen=True)
class LedgerConfig:
    backend: str
    options: Mapping[str, Any]
    chain_id: int


@dataclass(frozen=True)
class SettlementConfig:
    fee_bps: int
    fee_receiver: str | None
    floor_price: int


@dataclass(frozen=True)
class AuctionConfig:
    fee_bps: int
    fee_receiver: str | None
    floor_price: int
    min_duration: int
    max_duration: int
    min_next_bid_percent: int
    extension_window: int


@dataclass(frozen=True)
class GovernanceConfig:
    members: tuple[str, ...]
    quorum: int
    delay_seconds: int


@dataclass(frozen=True)
class EventsConfig:
    backend: str
    options: Mapping[str, Any]


@dataclass(frozen=True)
class OperatorConfig:
    operator_id: str
    currency_symbol: str
    admin: str | None


@dataclass(frozen=True)
class ServerConfig:
    listen: Mapping[str, Any]
    transport: TransportConfig
    ledger: LedgerConfig
    settlement: SettlementConfig
    auction: AuctionConfig
    governance: GovernanceConfig
    events: EventsConfig
    operator: OperatorConfig


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def parse_server_config(data: Mapping[str, Any]) -> ServerConfig:
    transport = data.get("transport", {})
    ledger = data.get("ledger", {})
    settlement = data.get("settlement", {})
    auction = data.get("auction", {})
    governance = data.get("governance", {})
    events = data.get("events", {})
    operator = data.get("operator", {})
    members = tuple(str(member).lower() for member in governance.get("members") or ())
    return ServerConfig(
        listen=data.get("listen", {}),
        transport=TransportConfig(
            nonce_ttl_seconds=int(transport.get("nonce_ttl_seconds", 60)),
            max_clock_skew_ms=int(transport.get("max_clock_skew_ms", 5000)),
        ),
        ledger=LedgerConfig(
            backend=str(ledger.get("backend", "in_memory")),
            options=dict(ledger.get("options") or {}),
            chain_id=int(ledger.get("chain_id", 1)),
        ),
        settlement=SettlementConfig(
            fee_bps=int(settlement.get("fee_bps", 250)),
            fee_receiver=settlement.get("fee_receiver"),
            floor_price=int(settlement.get("floor_price", 10**15)),
        ),
        auction=AuctionConfig(
            fee_bps=int(auction.get("fee_bps", settlement.get("fee_bps", 250))),
            fee_receiver=auction.get("fee_receiver", settlement.get("fee_receiver")),
            floor_price=int(auction.get("floor_price", 10**15)),
            min_duration=int(auction.get("min_duration", 3600)),
            max_duration=int(auction.get("max_duration", 30 * 86400)),
            min_next_bid_percent=int(auction.get("min_next_bid_percent", 5)),
            extension_window=int(auction.get("extension_window", 600)),
        ),
        governance=GovernanceConfig(
            members=members,
            quorum=int(governance.get("quorum", max(len(members), 1))),
            delay_seconds=int(governance.get("delay_seconds", 86400)),
        ),
        events=EventsConfig(
            backend=str(events.get("backend", "local")),
            options=dict(events.get("options") or {}),
        ),
        operator=OperatorConfig(
            operator_id=str(operator.get("id", "operator")),
            currency_symbol=str(operator.get("currency_symbol", "WETH")),
            admin=str(operator["admin"]).lower() if operator.get("admin") else None,
        ),
    )


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    path = Path(os.getenv("MARKETPLACE_CONFIG_PATH", _DEFAULT_SERVER_CONFIG))
    return parse_server_config(_load_yaml(path))


def get_collections_config_path() -> Path:
    return Path(os.getenv("MARKETPLACE_COLLECTIONS_PATH", _DEFAULT_COLLECTIONS_CONFIG))
