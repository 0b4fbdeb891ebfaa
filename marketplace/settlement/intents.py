"""Signed trade intents and their domain-separated typed hashes.

An intent is never stored; only its hash (for cancellation) and its
``(principal, nonce)`` pair (for replay protection) are. The hash covers the
signing domain, so a signature produced for one protocol instance or chain is
useless against another.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Mapping, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..errors import AuthorizationError, ValidationError
from ..transport.canonical_json import canonical_digest
from ..transport.signatures import SignatureError, sign_digest, verify_digest

DOMAIN_NAME = "MarketplaceSettlement"
DOMAIN_VERSION = "1"


@dataclass(frozen=True)
class Domain:
    chain_id: int
    verifying_contract: str
    name: str = DOMAIN_NAME
    version: str = DOMAIN_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chain_id": str(self.chain_id),
            "verifying_contract": self.verifying_contract,
        }


def _as_int(data: Mapping[str, Any], field: str) -> int:
    try:
        value = int(data[field])
    except KeyError as exc:
        raise ValidationError("InvalidIntent", f"{field} is required") from exc
    except (TypeError, ValueError) as exc:
        raise ValidationError("InvalidIntent", f"{field} must be an integer") from exc
    if value < 0:
        raise ValidationError("InvalidIntent", f"{field} cannot be negative")
    return value


def _as_address(data: Mapping[str, Any], field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value:
        raise ValidationError("InvalidIntent", f"{field} is required")
    return value.lower()


@dataclass(frozen=True)
class Order:
    """Seller-signed, buyer-executable intent."""

    seller: str
    collection_id: int
    token_id: int
    price: int
    nonce: int
    expiry: int

    primary_type: ClassVar[str] = "Order"

    @property
    def principal(self) -> str:
        return self.seller

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Order":
        return cls(
            seller=_as_address(data, "seller"),
            collection_id=_as_int(data, "collection_id"),
            token_id=_as_int(data, "token_id"),
            price=_as_int(data, "price"),
            nonce=_as_int(data, "nonce"),
            expiry=_as_int(data, "expiry"),
        )


@dataclass(frozen=True)
class Offer:
    """Buyer-signed, seller-executable intent."""

    buyer: str
    collection_id: int
    token_id: int
    price: int
    nonce: int
    expiry: int

    primary_type: ClassVar[str] = "Offer"

    @property
    def principal(self) -> str:
        return self.buyer

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Offer":
        return cls(
            buyer=_as_address(data, "buyer"),
            collection_id=_as_int(data, "collection_id"),
            token_id=_as_int(data, "token_id"),
            price=_as_int(data, "price"),
            nonce=_as_int(data, "nonce"),
            expiry=_as_int(data, "expiry"),
        )


Intent = Union[Order, Offer]


def intent_message(intent: Intent) -> dict[str, str]:
    """JSON-safe message body; integers travel as decimal strings."""
    return {key: str(value) for key, value in asdict(intent).items()}


def typed_payload(domain: Domain, intent: Intent) -> dict[str, Any]:
    return {
        "domain": domain.to_dict(),
        "primary_type": intent.primary_type,
        "message": intent_message(intent),
    }


def intent_digest(domain: Domain, intent: Intent) -> bytes:
    return canonical_digest(typed_payload(domain, intent))


def intent_hash(domain: Domain, intent: Intent) -> str:
    return "0x" + intent_digest(domain, intent).hex()


def sign_intent(domain: Domain, intent: Intent, private_key: Ed25519PrivateKey) -> str:
    return sign_digest(intent_digest(domain, intent), private_key)


def verify_intent(domain: Domain, intent: Intent, signature: str) -> None:
    """Raise unless ``signature`` was produced by the intent's principal."""
    try:
        verify_digest(intent_digest(domain, intent), signature, intent.principal)
    except SignatureError as exc:
        raise AuthorizationError(
            "InvalidSignature", f"{intent.primary_type} signature does not match {intent.principal}: {exc}"
        ) from exc
