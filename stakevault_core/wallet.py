"""
Wallet management for vault callers.

A wallet wraps a secp256k1 key-pair and provides:
  - Address derivation
  - Signing of request payloads submitted to the vault API
  - Verification of signed payloads (server side)

Signed envelope format::

    {
        "payload":    {...},             # "op", "account", "nonce" and arguments
        "public_key": "04ab…",           # hex, uncompressed
        "signature":  "9f…"              # hex, raw r || s
    }
"""

from __future__ import annotations

from typing import Any

from stakevault_core.crypto_utils import (
    canonical_json,
    derive_address,
    generate_keypair,
    private_key_from_seed,
    sign,
    verify,
)
from stakevault_core.errors import AuthorizationError


class Wallet:
    """secp256k1 key-pair with an EVM-style address."""

    def __init__(self, private_key: bytes, public_key: bytes | None = None):
        priv, pub = generate_keypair(private_key)
        if public_key is not None and public_key != pub:
            raise ValueError("public key does not match private key")
        self.private_key = priv
        self.public_key = pub
        self.address: str = derive_address(pub)

    @classmethod
    def create(cls) -> Wallet:
        priv, pub = generate_keypair()
        return cls(priv, pub)

    @classmethod
    def from_seed(cls, seed: str) -> Wallet:
        return cls(private_key_from_seed(seed))

    def sign_payload(self, payload: dict[str, Any], op: str | None = None) -> dict[str, Any]:
        """
        Return a signed envelope for *payload* with ``account`` filled in.

        *op* names the operation the signature authorises (``"stake"``,
        ``"unstake"``, ``"unstake_all"``); the API refuses the envelope on
        any other endpoint.
        """
        body = dict(payload)
        body["account"] = self.address
        if op is not None:
            body["op"] = op
        return {
            "payload": body,
            "public_key": self.public_key.hex(),
            "signature": sign(self.private_key, canonical_json(body)).hex(),
        }

    def __repr__(self) -> str:
        return f"Wallet({self.address})"


def verify_envelope(envelope: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """
    Check a signed envelope and return ``(caller_address, payload)``.

    The signer's derived address must equal ``payload["account"]``.
    """
    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        raise AuthorizationError("signed payload missing", code="BadSignature")
    try:
        public_key = bytes.fromhex(envelope.get("public_key", ""))
        signature = bytes.fromhex(envelope.get("signature", ""))
    except (TypeError, ValueError):
        raise AuthorizationError("malformed key or signature", code="BadSignature")
    if not verify(public_key, canonical_json(payload), signature):
        raise AuthorizationError("signature does not verify", code="BadSignature")
    try:
        address = derive_address(public_key)
    except ValueError:
        raise AuthorizationError("malformed public key", code="BadSignature")
    claimed = str(payload.get("account", "")).lower()
    if claimed != address:
        raise AuthorizationError(
            f"signer {address} does not match account {claimed}", code="BadSignature",
        )
    return address, payload
