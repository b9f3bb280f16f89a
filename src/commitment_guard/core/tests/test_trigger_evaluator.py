"""
Tests for the trigger evaluator.

Prices come from live pool state; emission follows edge/level semantics.
"""
import logging
from decimal import Decimal

import pytest

from commitment_guard.chain.client import LedgerError
from commitment_guard.core import (
    PoolResolutionError,
    TriggerEvaluator,
    price_from_sqrt_price_x96,
)


def _by_id(evaluations):
    return {e.trigger_id: e for e in evaluations}


class TestPriceConversion:
    """sqrtPriceX96 -> quote per base."""

    def test_base_token0_uses_raw_ratio(self):
        # raw = 1 (sqrtPrice = 2**96), equal decimals
        price = price_from_sqrt_price_x96(2**96, 18, 18, base_is_token0=True)
        assert price == Decimal(1)

    def test_base_token1_inverts_ratio(self):
        # raw = 4 token1 per token0 -> 0.25 token0 per token1
        price = price_from_sqrt_price_x96(2 * 2**96, 18, 18, base_is_token0=False)
        assert price == Decimal("0.25")

    def test_decimals_adjustment(self):
        # 1 raw unit of token1 per raw token0, token0 has 6 decimals more
        price = price_from_sqrt_price_x96(2**96, 18, 6, base_is_token0=True)
        assert price == Decimal(10) ** 12

    def test_rejects_zero_sqrt_price(self):
        with pytest.raises(PoolResolutionError):
            price_from_sqrt_price_x96(0, 18, 6, base_is_token0=True)


class TestEvaluation:
    """Live pool reads and comparisons."""

    @pytest.mark.asyncio
    async def test_weth_usdc_price_matches_pool(self, evaluator, t1):
        """WETH is token1 of WETH/USDC, so this also exercises inversion."""
        [evaluation] = await evaluator.evaluate([t1])

        assert abs(evaluation.observed_price - Decimal("2000")) < Decimal("0.000001")
        assert evaluation.matched is True
        assert evaluation.emitted is True
        assert evaluation.evaluated_at_ms == 1_700_000_000_000

    @pytest.mark.asyncio
    async def test_uni_weth_price_matches_pool(self, evaluator, t2):
        [evaluation] = await evaluator.evaluate([t2])

        assert abs(evaluation.observed_price - Decimal("0.025")) < Decimal("0.0000001")
        assert evaluation.matched is True

    @pytest.mark.asyncio
    async def test_unmatched_trigger_is_reported_not_emitted(self, evaluator, t1):
        t1["threshold"] = "2500"

        [evaluation] = await evaluator.evaluate([t1])

        assert evaluation.matched is False
        assert evaluation.emitted is False
        assert evaluator.fired_ids == frozenset()

    @pytest.mark.asyncio
    async def test_lte_comparator(self, evaluator, t1):
        t1["comparator"] = "<="
        t1["threshold"] = "1900"

        [evaluation] = await evaluator.evaluate([t1])

        assert evaluation.matched is False


class TestPoolSelection:
    """Explicit pools and high-liquidity selection."""

    @pytest.mark.asyncio
    async def test_high_liquidity_picks_deepest_pool(self, evaluator, t1, addr):
        [evaluation] = await evaluator.evaluate([t1])

        assert evaluation.pool == addr.pool_weth_usdc_3000
        assert evaluation.pool_fee == 3000

    @pytest.mark.asyncio
    async def test_liquidity_tie_keeps_first_fee_tier(self, market, t1, addr):
        market.set_call(addr.pool_weth_usdc_500, "liquidity", 10**18)
        evaluator = TriggerEvaluator(market)

        [evaluation] = await evaluator.evaluate([t1])

        assert evaluation.pool == addr.pool_weth_usdc_500
        assert evaluation.pool_fee == 500

    @pytest.mark.asyncio
    async def test_explicit_pool_is_used(self, evaluator, t1, addr):
        t1["pool"] = addr.pool_weth_usdc_500

        [evaluation] = await evaluator.evaluate([t1])

        assert evaluation.pool == addr.pool_weth_usdc_500
        assert evaluation.pool_fee == 500

    @pytest.mark.asyncio
    async def test_factory_override(self, market, t1, addr):
        evaluator = TriggerEvaluator(market, factory=addr.factory)

        [evaluation] = await evaluator.evaluate([t1])

        assert evaluation.pool_fee == 3000

    @pytest.mark.asyncio
    async def test_pool_metadata_cached_liquidity_reread(self, market, metadata_cache, t1):
        evaluator = TriggerEvaluator(market, cache=metadata_cache)

        await evaluator.evaluate([t1])
        token0_reads = market.count_calls("token0")
        decimals_reads = market.count_calls("decimals")
        get_pool_reads = market.count_calls("getPool")
        liquidity_reads = market.count_calls("liquidity")

        await evaluator.evaluate([t1])

        assert market.count_calls("token0") == token0_reads
        assert market.count_calls("decimals") == decimals_reads
        assert market.count_calls("getPool") == get_pool_reads
        assert market.count_calls("liquidity") == 2 * liquidity_reads
        assert len(metadata_cache.pool_meta) == 1

    @pytest.mark.asyncio
    async def test_separate_caches_do_not_share_entries(self, market, t1):
        first = TriggerEvaluator(market)
        second = TriggerEvaluator(market)

        await first.evaluate([t1])

        assert first.cache.pool_meta
        assert not second.cache.pool_meta


class TestFailureIsolation:
    """One bad trigger never takes the cycle down."""

    @pytest.mark.asyncio
    async def test_pool_for_other_pair_is_skipped(self, evaluator, t1, t2, addr, caplog):
        t1["pool"] = addr.pool_uni_weth_3000

        with caplog.at_level(logging.WARNING):
            evaluations = await evaluator.evaluate([t1, t2])

        assert list(_by_id(evaluations)) == ["t2"]
        assert "t1" in caplog.text
        assert "does not match" in caplog.text

    @pytest.mark.asyncio
    async def test_ledger_failure_skips_only_that_trigger(self, evaluator, market, t1, t2, addr):
        market.set_call(addr.pool_weth_usdc_3000, "slot0", LedgerError("timeout"))

        evaluations = await evaluator.evaluate([t1, t2])

        assert list(_by_id(evaluations)) == ["t2"]

    @pytest.mark.asyncio
    async def test_no_pool_found_is_skipped(self, evaluator, t1, addr):
        t1["quoteToken"] = addr.safe  # no pools for WETH/SAFE

        assert await evaluator.evaluate([t1]) == []

    @pytest.mark.asyncio
    async def test_malformed_trigger_is_skipped(self, evaluator, t1, t2):
        t1["threshold"] = "-5"

        evaluations = await evaluator.evaluate([t1, t2])

        assert list(_by_id(evaluations)) == ["t2"]


class TestEmission:
    """Edge- and level-triggered emission."""

    @pytest.mark.asyncio
    async def test_edge_triggered_emits_once_across_cycles(self, evaluator, t1):
        cycles = [await evaluator.evaluate([t1]) for _ in range(3)]

        emitted = [c[0].emitted for c in cycles]
        matched = [c[0].matched for c in cycles]
        assert emitted == [True, False, False]
        assert matched == [True, True, True]
        assert evaluator.fired_ids == frozenset({"t1"})

    @pytest.mark.asyncio
    async def test_level_triggered_emits_every_cycle(self, evaluator, t1):
        t1["emitOnce"] = False

        cycles = [await evaluator.evaluate([t1]) for _ in range(3)]

        assert [c[0].emitted for c in cycles] == [True, True, True]
        assert evaluator.fired_ids == frozenset()

    @pytest.mark.asyncio
    async def test_fires_when_price_crosses_later(self, evaluator, market, t1, addr):
        market.set_price(addr.pool_weth_usdc_3000, addr.weth, addr.usdc, "1500")
        [first] = await evaluator.evaluate([t1])

        market.set_price(addr.pool_weth_usdc_3000, addr.weth, addr.usdc, "1850")
        [second] = await evaluator.evaluate([t1])

        assert first.emitted is False
        assert second.emitted is True

    @pytest.mark.asyncio
    async def test_restored_fired_ids_suppress_emission(self, evaluator, t1):
        evaluator.restore_fired(["t1"])

        [evaluation] = await evaluator.evaluate([t1])

        assert evaluation.matched is True
        assert evaluation.emitted is False

    @pytest.mark.asyncio
    async def test_reset_fired_rearms(self, evaluator, t1):
        await evaluator.evaluate([t1])
        evaluator.reset_fired()

        [evaluation] = await evaluator.evaluate([t1])

        assert evaluation.emitted is True

    @pytest.mark.asyncio
    async def test_reset_forgets_state(self, evaluator, t1):
        await evaluator.evaluate([t1])
        evaluator.reset()

        assert evaluator.fired_ids == frozenset()
        assert evaluator.state_for("t1").last_matched is False
