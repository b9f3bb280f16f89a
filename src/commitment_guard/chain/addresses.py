"""
Address normalization and per-chain Uniswap V3 deployment defaults.

All addresses inside the package are EIP-55 checksummed so that equality
checks (recipient, allowlists, pool token order) are plain string compares.
"""
from __future__ import annotations

import re
from typing import Any, Iterable

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

MAINNET_CHAIN_ID = 1
SEPOLIA_CHAIN_ID = 11155111

DEFAULT_FACTORY_BY_CHAIN = {
    MAINNET_CHAIN_ID: "0x1F98431c8aD98523631AE4a59f267346ea31F984",
    SEPOLIA_CHAIN_ID: "0x0227628f3F023bb0B980b67D528571c95c6DaC1c",
}

# Ordered: QuoterV2 deployment first, legacy Quoter second.
DEFAULT_QUOTERS_BY_CHAIN = {
    MAINNET_CHAIN_ID: (
        "0x61fFE014bA17989E743c5F6cB21bF9697530B21e",
        "0xb27308f9F90D607463bb33eA1BeBb41C27CE5AB6",
    ),
    SEPOLIA_CHAIN_ID: (
        "0xEd1f6473345F45b75F8179591dd5bA1888cf2FB3",
        "0xb27308f9F90D607463bb33eA1BeBb41C27CE5AB6",
    ),
}

DEFAULT_FEE_TIERS = (500, 3000, 10000)

# SwapRouter02 on Sepolia
DEFAULT_SEPOLIA_ROUTER = "0x3bFA4769FB09eefC5a80d6E87c3B9C650f7Ae48E"


def normalize_address(value: Any) -> str:
    """
    Normalize a hex address to its checksummed form.

    Raises:
        ValueError: If the value is not a 20-byte hex string
    """
    if not isinstance(value, str) or not _ADDRESS_RE.match(value.strip()):
        raise ValueError(f"Invalid address: {value!r}")
    return Web3.to_checksum_address(value.strip().lower())


def normalize_address_list(values: Iterable[Any]) -> list[str]:
    return [normalize_address(v) for v in values]


def is_zero_address(value: str) -> bool:
    return normalize_address(value) == ZERO_ADDRESS


def normalize_hash(value: Any) -> str | None:
    """Return a lowercase 0x-prefixed 32-byte hash, or None if not a hash."""
    if isinstance(value, (bytes, bytearray)):
        value = Web3.to_hex(value)
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if not _HASH_RE.match(candidate):
        return None
    return candidate.lower()
