"""
Core layer test fixtures.

Triggers used throughout: t1 (WETH/USDC gte 1800, priority 1) and
t2 (UNI/WETH lte 0.03, priority 2). With the shared `market` prices
(2000 USDC per WETH, 0.025 WETH per UNI) both match.
"""
import pytest

from commitment_guard.core import ChainMetadataCache, TriggerEvaluator


@pytest.fixture
def t1(addr):
    return {
        "id": "t1",
        "baseToken": addr.weth,
        "quoteToken": addr.usdc,
        "comparator": "gte",
        "threshold": "1800",
        "priority": 1,
    }


@pytest.fixture
def t2(addr):
    return {
        "id": "t2",
        "baseToken": addr.uni,
        "quoteToken": addr.weth,
        "comparator": "lte",
        "threshold": "0.03",
        "priority": 2,
    }


@pytest.fixture
def metadata_cache():
    return ChainMetadataCache()


@pytest.fixture
def evaluator(market, metadata_cache):
    """Evaluator over the shared market, fixed clock."""
    return TriggerEvaluator(market, cache=metadata_cache, clock=lambda: 1_700_000_000.0)
