"""
Execution Layer - Quotes, validation and the single-fire lock.

This module provides:
    - QuoteResolver / QuoteResult: Live quote with QuoterV2 -> V1 fallback
    - ActionValidator / ValidatorPolicy: Reject policy violations, rewrite pinned fields
    - SwapAction: The validated action in governor tool shape
    - ExecutionGuard: Persisted single-fire lock state machine
    - LedgerReconciler: Log scan + receipt checks feeding the guard
    - BalanceManager / BalanceConfig: ERC-20 balances with refresh after submission

Invariants:
    - At most one action validates while a proposal is pending
    - amount_out_min always comes from a quote taken in the same cycle
    - recipient is always the commitment account
"""

# Quotes
from .quote_resolver import (
    QuoteResolver,
    QuoteResult,
    apply_slippage,
)

# Validation
from .action_validator import (
    CALL_OPERATION,
    SWAP_ACTION_KIND,
    ActionValidator,
    AmountInMode,
    ProposedSwap,
    RouterPolicy,
    SwapAction,
    ValidatorPolicy,
)

# Single-fire lock
from .execution_guard import (
    EpisodeMode,
    ExecutionGuard,
    LockState,
    SubmissionOutcome,
    SubmissionReport,
)
from .reconciler import LedgerReconciler, ProposalEvents, ScanResult

# Balances
from .balance_manager import BalanceConfig, BalanceManager

__all__ = [
    # Quotes
    "QuoteResolver",
    "QuoteResult",
    "apply_slippage",
    # Validation
    "CALL_OPERATION",
    "SWAP_ACTION_KIND",
    "ActionValidator",
    "AmountInMode",
    "ProposedSwap",
    "RouterPolicy",
    "SwapAction",
    "ValidatorPolicy",
    # Lock
    "EpisodeMode",
    "ExecutionGuard",
    "LockState",
    "SubmissionOutcome",
    "SubmissionReport",
    "LedgerReconciler",
    "ProposalEvents",
    "ScanResult",
    # Balances
    "BalanceConfig",
    "BalanceManager",
]
