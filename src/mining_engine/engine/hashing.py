"""Pluggable hash primitive and work header encoding.

The engine never commits to a proof-of-work algorithm. Anything exposing
``hash(data: bytes) -> bytes`` with ordinary cryptographic properties can be
injected; double SHA-256 is the stand-in default.
"""

from __future__ import annotations

import hashlib
from typing import Dict, Protocol, Type, runtime_checkable

from mining_engine.engine.models import Work


@runtime_checkable
class HashPrimitive(Protocol):
    """A hash function over bytes."""

    name: str

    def hash(self, data: bytes) -> bytes:
        ...


class Sha256dHash:
    """Double SHA-256."""

    name = "sha256d"

    def hash(self, data: bytes) -> bytes:
        return hashlib.sha256(hashlib.sha256(data).digest()).digest()


class Blake2bHash:
    """BLAKE2b with a 32-byte digest."""

    name = "blake2b"

    def hash(self, data: bytes) -> bytes:
        return hashlib.blake2b(data, digest_size=32).digest()


HASH_PRIMITIVES: Dict[str, Type] = {
    Sha256dHash.name: Sha256dHash,
    Blake2bHash.name: Blake2bHash,
}


def get_hash_primitive(name: str) -> HashPrimitive:
    """
    Look up a hash primitive by name.

    Raises:
        ValueError: If no primitive is registered under that name.
    """
    cls = HASH_PRIMITIVES.get(name)
    if cls is None:
        raise ValueError(f"Unknown hash primitive '{name}'. Available: {sorted(HASH_PRIMITIVES)}")
    return cls()


def format_nonce(nonce: int) -> str:
    """Wire form of a nonce: 16 lowercase hex chars."""
    return f"{nonce:016x}"


def normalize_nonce(nonce: str) -> str:
    """
    Canonicalise a hex nonce so equal values compare equal.

    Raises:
        ValueError: If the nonce is not a 64-bit hex value.
    """
    value = int(str(nonce).strip().lower().removeprefix("0x"), 16)
    if value < 0 or value > 0xFFFFFFFFFFFFFFFF:
        raise ValueError(f"Nonce out of range: {nonce}")
    return format_nonce(value)


def header_bytes(work: Work, address: str, nonce: int) -> bytes:
    """Bytes hashed for one attempt: previous hash, miner address and nonce."""
    return (
        work.prev_hash.encode("ascii", errors="replace")
        + address.encode("utf-8")
        + nonce.to_bytes(8, "big")
    )


def compute_hash(hasher: HashPrimitive, work: Work, address: str, nonce: int) -> bytes:
    return hasher.hash(header_bytes(work, address, nonce))
