"""
Execution layer test fixtures.

The validator and guard are pure/persisted logic; quotes and balances go
through the shared FakeLedger. Lock records live in memory or in tmp_path.
"""
from decimal import Decimal
from typing import Optional

import pytest

from commitment_guard.core import Comparator, TriggerEvaluation
from commitment_guard.execution import (
    ActionValidator,
    ExecutionGuard,
    QuoteResult,
    ValidatorPolicy,
)
from commitment_guard.storage import ExecutionLockRecord


class MemoryLockStore:
    """LockStore kept in memory, with a save counter."""

    def __init__(self, record: Optional[ExecutionLockRecord] = None):
        self.record = record
        self.saves = 0
        self.deletes = 0

    async def load(self):
        return self.record.model_copy(deep=True) if self.record is not None else None

    async def save(self, record):
        self.saves += 1
        self.record = record.model_copy(deep=True)

    async def delete(self):
        self.deletes += 1
        self.record = None


class Clock:
    """Settable millisecond clock."""

    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    return MemoryLockStore()


@pytest.fixture
def store_factory():
    return MemoryLockStore


@pytest.fixture
def guard(store, clock):
    return ExecutionGuard(store, clock=clock)


@pytest.fixture
def policy(addr):
    return ValidatorPolicy(
        commitment_account=addr.safe,
        token_allowlist=[addr.weth, addr.usdc, addr.uni],
        fee_tier_allowlist=[500, 3000, 10000],
        router_allowlist=[addr.router],
        default_router=addr.router,
    )


@pytest.fixture
def validator(policy, guard):
    return ActionValidator(policy, guard=guard)


@pytest.fixture
def winner(addr):
    """t1 won: WETH/USDC, pool fee 3000."""
    return TriggerEvaluation(
        trigger_id="t1",
        observed_price=Decimal("2000"),
        matched=True,
        emitted=True,
        priority=1,
        pool=addr.pool_weth_usdc_3000,
        pool_fee=3000,
        base_token=addr.weth,
        quote_token=addr.usdc,
        comparator=Comparator.GTE,
        threshold=Decimal("1800"),
        evaluated_at_ms=0,
    )


@pytest.fixture
def swap_action(addr):
    """Caller-proposed WETH -> USDC action in governor tool shape."""
    return {
        "kind": "uniswap_v3_exact_input_single",
        "tokenIn": addr.weth,
        "tokenOut": addr.usdc,
        "router": addr.router,
        "recipient": addr.safe,
        "fee": 3000,
        "amountInWei": "30000",
        "amountOutMinWei": "1",
        "operation": 1,
    }


@pytest.fixture
def quote(addr):
    return QuoteResult(
        source_used=addr.quoter_a,
        interface="v2",
        token_in=addr.weth,
        token_out=addr.usdc,
        fee=3000,
        amount_in=30000,
        quoted_amount_out=1_000_000,
        min_amount_out=995_000,
        slippage_bps=50,
    )
