"""Helpers for validating and normalizing EVM addresses and transaction hashes."""

from __future__ import annotations

import re
from functools import lru_cache

from eth_utils import to_checksum_address

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def is_valid_evm_address(address: str | None) -> bool:
    """Return True for a 0x-prefixed, 20-byte hex address (any casing)."""

    if not address or not isinstance(address, str):
        return False
    return bool(_EVM_ADDRESS_RE.fullmatch(address))


def is_valid_tx_hash(tx_hash: str | None) -> bool:
    if not tx_hash or not isinstance(tx_hash, str):
        return False
    return bool(_TX_HASH_RE.fullmatch(tx_hash))


def is_zero_address(address: str | None) -> bool:
    return bool(address) and address.lower() == ZERO_ADDRESS


@lru_cache(maxsize=256)
def normalize_address(address: str) -> str:
    """Checksum an address; raises ValueError on malformed input."""

    if not is_valid_evm_address(address):
        raise ValueError(f"Invalid EVM address: {address!r}")
    return to_checksum_address(address)


def same_address(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return left.lower() == right.lower()


def short_address(address: str, *, head: int = 6, tail: int = 4) -> str:
    if len(address) <= head + tail:
        return address
    return f"{address[:head]}...{address[-tail:]}"


__all__ = [
    "ZERO_ADDRESS",
    "is_valid_evm_address",
    "is_valid_tx_hash",
    "is_zero_address",
    "normalize_address",
    "same_address",
    "short_address",
]
