"""Signature utilities based on Ed25519 public key cryptography.

An externally owned account is addressed by its raw Ed25519 public key, hex
encoded with a ``0x`` prefix. Verifying a signature against an address is
therefore the same as recovering the signer and comparing it to the address.
"""

from __future__ import annotations

import base64
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .canonical_json import canonical_dumps

ADDRESS_HEX_LENGTH = 64


class SignatureError(ValueError):
    """Raised when a payload signature is invalid or malformed."""


def normalize_address(address: str) -> str:
    if not isinstance(address, str) or not address:
        raise SignatureError("address missing")
    value = address.lower()
    if not value.startswith("0x"):
        value = "0x" + value
    body = value[2:]
    if len(body) != ADDRESS_HEX_LENGTH:
        raise SignatureError(f"address must be {ADDRESS_HEX_LENGTH} hex characters")
    try:
        bytes.fromhex(body)
    except ValueError as exc:
        raise SignatureError("address is not hex") from exc
    return value


def public_key_from_address(address: str) -> Ed25519PublicKey:
    raw = bytes.fromhex(normalize_address(address)[2:])
    try:
        return Ed25519PublicKey.from_public_bytes(raw)
    except ValueError as exc:
        raise SignatureError("address is not an ed25519 public key") from exc


def address_of(public_key: Ed25519PublicKey) -> str:
    raw = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return "0x" + raw.hex()


def load_private_key(pem: str) -> Ed25519PrivateKey:
    if not pem:
        raise SignatureError("private key missing")
    return serialization.load_pem_private_key(pem.encode("utf-8"), password=None)


def generate_keypair() -> tuple[Ed25519PrivateKey, str]:
    private_key = Ed25519PrivateKey.generate()
    return private_key, address_of(private_key.public_key())


def private_key_to_pem(private_key: Ed25519PrivateKey) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


def _decode_signature(signature_b64: str) -> bytes:
    if not signature_b64:
        raise SignatureError("signature missing")
    try:
        return base64.b64decode(signature_b64, validate=True)
    except (ValueError, TypeError) as exc:
        raise SignatureError("signature is not base64") from exc


def verify_digest(digest: bytes, signature_b64: str, address: str) -> None:
    """Validate an ed25519 signature over a precomputed digest."""
    signature = _decode_signature(signature_b64)
    public_key = public_key_from_address(address)
    try:
        public_key.verify(signature, digest)
    except InvalidSignature as exc:
        raise SignatureError("signature verification failed") from exc


def verify_signature(payload: Any, signature_b64: str, address: str) -> None:
    """Validate an ed25519 signature over the canonical JSON payload."""
    verify_digest(canonical_dumps(payload), signature_b64, address)


def sign_digest(digest: bytes, private_key: Ed25519PrivateKey) -> str:
    return base64.b64encode(private_key.sign(digest)).decode("utf-8")


def sign_payload(payload: Any, private_key: Ed25519PrivateKey) -> str:
    return sign_digest(canonical_dumps(payload), private_key)
