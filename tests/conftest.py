"""
Shared fixtures for cross-layer tests.

Layer fixtures live in src/commitment_guard/{layer}/tests/conftest.py; the
FakeLedger market and well-known addresses come from the repository root
conftest.py.
"""
import pytest

from commitment_guard.core import (
    ChainMetadataCache,
    CommitmentEngine,
    EngineConfig,
    TriggerEvaluator,
    static_triggers,
)
from commitment_guard.execution import (
    ActionValidator,
    BalanceManager,
    ExecutionGuard,
    QuoteResolver,
    ValidatorPolicy,
)
from commitment_guard.storage import FileLockStore


@pytest.fixture
def two_branch_triggers(addr):
    """
    t1: sell WETH for USDC when WETH >= 1800 USDC (priority 1)
    t2: sell UNI for WETH when UNI <= 0.03 WETH (priority 2)
    """
    return [
        {
            "id": "t1",
            "baseToken": addr.weth,
            "quoteToken": addr.usdc,
            "comparator": "gte",
            "threshold": "1800",
            "priority": 1,
            "emitOnce": False,
        },
        {
            "id": "t2",
            "baseToken": addr.uni,
            "quoteToken": addr.weth,
            "comparator": "lte",
            "threshold": "0.03",
            "priority": 2,
            "emitOnce": False,
        },
    ]


@pytest.fixture
def guard_stack(market, addr, tmp_path, two_branch_triggers):
    """A fully wired engine over the fake market with a file lock store."""
    guard = ExecutionGuard(FileLockStore(tmp_path / "lock.json"))
    policy = ValidatorPolicy(
        commitment_account=addr.safe,
        token_allowlist=[addr.weth, addr.usdc, addr.uni],
        router_allowlist=[addr.router],
        default_router=addr.router,
    )
    return CommitmentEngine(
        config=EngineConfig(),
        trigger_source=static_triggers(two_branch_triggers),
        evaluator=TriggerEvaluator(market, cache=ChainMetadataCache()),
        guard=guard,
        quote_resolver=QuoteResolver(market, slippage_bps=50),
        validator=ActionValidator(policy, guard=guard),
        balances=BalanceManager(market, addr.safe),
    )
