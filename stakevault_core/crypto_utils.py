"""
Cryptographic primitives for caller identity.

  - secp256k1 key-pairs and deterministic ECDSA signatures (``ecdsa``)
  - Keccak-256 hashing (``pycryptodome``)
  - EVM-style addresses: ``0x`` + last 20 bytes of Keccak-256(pubkey)
"""

from __future__ import annotations

import hashlib
import json
import os
import re
from typing import Any

from Crypto.Hash import keccak
from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def generate_keypair(private_key: bytes | None = None) -> tuple[bytes, bytes]:
    """
    Return ``(private_key, public_key)``.

    The public key is the 65-byte uncompressed SEC1 encoding (``0x04`` prefix).
    """
    if private_key is None:
        while True:
            candidate = os.urandom(32)
            if 0 < int.from_bytes(candidate, "big") < SECP256k1.order:
                private_key = candidate
                break
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    public_key = b"\x04" + sk.get_verifying_key().to_string()
    return private_key, public_key


def private_key_from_seed(seed: str) -> bytes:
    """Deterministic private key for a text seed (tests, local runs)."""
    n = int.from_bytes(sha256(seed.encode("utf-8")), "big") % (SECP256k1.order - 1)
    return (n + 1).to_bytes(32, "big")


def derive_address(public_key: bytes) -> str:
    """EVM-style lowercase address for a secp256k1 public key."""
    raw = public_key[1:] if len(public_key) == 65 else public_key
    if len(raw) != 64:
        raise ValueError("public key must be 64 or 65 bytes")
    return "0x" + keccak256(raw)[-20:].hex()


def normalize_address(address: str) -> str:
    return address.strip().lower()


def is_valid_address(address: str) -> bool:
    return bool(_ADDRESS_RE.match(normalize_address(address)))


def sign(private_key: bytes, message: bytes) -> bytes:
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return sk.sign_deterministic(message, hashfunc=hashlib.sha256)


def verify(public_key: bytes, message: bytes, signature: bytes) -> bool:
    raw = public_key[1:] if len(public_key) == 65 else public_key
    try:
        vk = VerifyingKey.from_string(raw, curve=SECP256k1)
        return vk.verify(signature, message, hashfunc=hashlib.sha256)
    except (BadSignatureError, ValueError, AssertionError):
        return False


def canonical_json(payload: dict[str, Any]) -> bytes:
    """Stable byte encoding of a request payload for signing."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
