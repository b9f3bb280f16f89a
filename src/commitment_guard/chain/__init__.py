"""
Chain Layer - Ledger read surface.

This module provides:
    - LedgerClient: Async web3.py facade (block height, reads, logs, receipts)
    - LogEntry / TransactionReceipt: Plain decoded results
    - LedgerError / ReceiptNotFoundError: Per-call failures
    - ABIs for ERC-20, Uniswap V3 pool/factory/quoters, Optimistic Governor events
    - Address helpers and per-chain Uniswap V3 defaults
"""

from .abis import (
    ERC20_ABI,
    OPTIMISTIC_GOVERNOR_EVENTS_ABI,
    PROPOSAL_DELETED,
    PROPOSAL_EXECUTED,
    QUOTER_V1_ABI,
    QUOTER_V2_ABI,
    TRANSACTIONS_PROPOSED,
    UNISWAP_V3_FACTORY_ABI,
    UNISWAP_V3_POOL_ABI,
)
from .addresses import (
    DEFAULT_FACTORY_BY_CHAIN,
    DEFAULT_FEE_TIERS,
    DEFAULT_QUOTERS_BY_CHAIN,
    DEFAULT_SEPOLIA_ROUTER,
    ZERO_ADDRESS,
    is_zero_address,
    normalize_address,
    normalize_address_list,
    normalize_hash,
)
from .client import (
    LedgerClient,
    LedgerError,
    LogEntry,
    ReceiptNotFoundError,
    TransactionReceipt,
)

__all__ = [
    # Client
    "LedgerClient",
    "LedgerError",
    "LogEntry",
    "ReceiptNotFoundError",
    "TransactionReceipt",
    # ABIs
    "ERC20_ABI",
    "OPTIMISTIC_GOVERNOR_EVENTS_ABI",
    "PROPOSAL_DELETED",
    "PROPOSAL_EXECUTED",
    "QUOTER_V1_ABI",
    "QUOTER_V2_ABI",
    "TRANSACTIONS_PROPOSED",
    "UNISWAP_V3_FACTORY_ABI",
    "UNISWAP_V3_POOL_ABI",
    # Addresses
    "DEFAULT_FACTORY_BY_CHAIN",
    "DEFAULT_FEE_TIERS",
    "DEFAULT_QUOTERS_BY_CHAIN",
    "DEFAULT_SEPOLIA_ROUTER",
    "ZERO_ADDRESS",
    "is_zero_address",
    "normalize_address",
    "normalize_address_list",
    "normalize_hash",
]
