"""Write local node config seeds, generating an operator key when asked."""

from __future__ import annotations

import argparse
from pathlib import Path

import yaml

from marketplace.config import get_collections_config_path
from marketplace.transport.signatures import generate_keypair, private_key_to_pem

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "marketplace" / "config"


def build_server_config(admin: str | None) -> dict:
    operator: dict = {"id": "marketplace-node", "currency_symbol": "WETH"}
    if admin:
        operator["admin"] = admin
    return {
        "listen": {"host": "0.0.0.0", "port": 8080},
        "transport": {"nonce_ttl_seconds": 300, "max_clock_skew_ms": 5000},
        "ledger": {"backend": "in_memory", "chain_id": 1, "options": {}},
        "settlement": {"fee_bps": 250, "floor_price": 10**15, "fee_receiver": admin},
        "auction": {
            "fee_bps": 250,
            "floor_price": 10**15,
            "min_duration": 3600,
            "max_duration": 30 * 86400,
            "min_next_bid_percent": 5,
            "extension_window": 600,
        },
        "governance": {"members": [admin] if admin else [], "quorum": 1, "delay_seconds": 86400},
        "events": {"backend": "local", "options": {}},
        "operator": operator,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--out", type=Path, default=DEFAULT_CONFIG_DIR)
    parser.add_argument("--generate-key", action="store_true")
    args = parser.parse_args()

    args.out.mkdir(parents=True, exist_ok=True)
    admin = None
    if args.generate_key:
        private_key, admin = generate_keypair()
        key_path = args.out / "operator.pem"
        key_path.write_text(private_key_to_pem(private_key))
        key_path.chmod(0o600)
        print(f"operator address {admin}, key written to {key_path}")

    server_path = args.out / "server.yaml"
    server_path.write_text(yaml.safe_dump(build_server_config(admin), sort_keys=False))
    collections_path = args.out / get_collections_config_path().name
    collections = []
    if admin:
        collections.append({"id": 1, "label": "genesis", "admin": admin, "royalty_receiver": admin, "royalty_bps": 500})
    collections_path.write_text(yaml.safe_dump({"collections": collections}, sort_keys=False))
    print(f"wrote {server_path} and {collections_path}")


if __name__ == "__main__":
    main()
