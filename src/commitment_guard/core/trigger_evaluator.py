"""
Trigger evaluator: trigger specs + live Uniswap V3 pool state -> evaluations.

For each trigger we resolve a pool (explicit, or highest liquidity across the
configured fee tiers), read slot0, convert sqrtPriceX96 into a base-per-quote
decimal price and compare it against the threshold.

Emission rules:
    - level-triggered (emit_once=False): emits every cycle it matches
    - edge-triggered (emit_once=True): emits the first time it matches, then
      never again for the episode (fired bookkeeping, persisted by the engine)

A trigger that cannot be evaluated (malformed spec, unresolvable pool, pool
for a different pair, RPC failure) is skipped for this cycle only.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

from commitment_guard.chain.abis import (
    ERC20_ABI,
    UNISWAP_V3_FACTORY_ABI,
    UNISWAP_V3_POOL_ABI,
)
from commitment_guard.chain.addresses import (
    DEFAULT_FACTORY_BY_CHAIN,
    DEFAULT_FEE_TIERS,
    is_zero_address,
    normalize_address,
)
from commitment_guard.chain.client import LedgerClient, LedgerError
from commitment_guard.errors import MalformedTriggerInputError

from .triggers import Trigger, TriggerEvaluation, normalize_trigger

logger = logging.getLogger(__name__)

Q192 = Decimal(2) ** 192
PRICE_PRECISION = 60


class PoolResolutionError(Exception):
    """Raised when a trigger's pool cannot be resolved or does not match its pair."""


@dataclass(frozen=True)
class PoolMeta:
    """Immutable pool metadata."""

    token0: str
    token1: str
    fee: int


@dataclass
class ChainMetadataCache:
    """
    Per-episode cache of immutable chain metadata.

    Owned by the caller and injected, so two episodes in one process never
    share entries by accident.
    """

    token_decimals: dict[str, int] = field(default_factory=dict)
    pool_meta: dict[str, PoolMeta] = field(default_factory=dict)
    factory_pools: dict[tuple[str, str, int], Optional[str]] = field(default_factory=dict)

    def clear(self) -> None:
        self.token_decimals.clear()
        self.pool_meta.clear()
        self.factory_pools.clear()


@dataclass
class TriggerState:
    """Cross-cycle bookkeeping for one trigger id."""

    last_matched: bool = False
    fired: bool = False


def price_from_sqrt_price_x96(
    sqrt_price_x96: int,
    token0_decimals: int,
    token1_decimals: int,
    base_is_token0: bool,
) -> Decimal:
    """
    Convert a pool's sqrtPriceX96 into quote-per-base in human units.

    The raw pool ratio is token1 per token0 in base units. When the base
    asset is token1 the ratio is inverted.

    Raises:
        PoolResolutionError: If the pool price is zero or invalid
    """
    sqrt_price = int(sqrt_price_x96)
    if sqrt_price <= 0:
        raise PoolResolutionError("Invalid sqrtPriceX96 from pool slot0")

    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        raw_token1_per_token0 = Decimal(sqrt_price) * Decimal(sqrt_price) / Q192
        if base_is_token0:
            return raw_token1_per_token0 * Decimal(10) ** (token0_decimals - token1_decimals)
        if raw_token1_per_token0 == 0:
            raise PoolResolutionError("Pool price resolved to zero")
        return (Decimal(1) / raw_token1_per_token0) * Decimal(10) ** (
            token1_decimals - token0_decimals
        )


class TriggerEvaluator:
    """
    Evaluates price triggers against live pool state.

    Usage:
        evaluator = TriggerEvaluator(ledger, fee_tiers=(500, 3000, 10000))
        evaluations = await evaluator.evaluate(triggers)
        emitted = [e for e in evaluations if e.emitted]
    """

    def __init__(
        self,
        ledger: LedgerClient,
        fee_tiers: Sequence[int] = DEFAULT_FEE_TIERS,
        factory: Optional[str] = None,
        cache: Optional[ChainMetadataCache] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the evaluator.

        Args:
            ledger: Ledger read surface
            fee_tiers: Fee tiers enumerated for high-liquidity selection
            factory: Uniswap V3 factory override (else chain default)
            cache: Injected metadata cache (a fresh one if omitted)
            clock: Time source in seconds, for tests
        """
        self._ledger = ledger
        self._fee_tiers = tuple(int(f) for f in fee_tiers)
        self._factory = normalize_address(factory) if factory else None
        self._cache = cache if cache is not None else ChainMetadataCache()
        self._clock = clock or time.time
        self._states: dict[str, TriggerState] = {}

    @property
    def cache(self) -> ChainMetadataCache:
        return self._cache

    @property
    def fired_ids(self) -> frozenset[str]:
        return frozenset(tid for tid, s in self._states.items() if s.fired)

    def state_for(self, trigger_id: str) -> TriggerState:
        return self._states.setdefault(trigger_id, TriggerState())

    def restore_fired(self, trigger_ids: Iterable[str]) -> None:
        """Re-apply persisted fired bookkeeping after a restart."""
        for trigger_id in trigger_ids:
            self.state_for(trigger_id).fired = True

    def reset_fired(self) -> None:
        """Allow edge-triggered triggers to fire again (repeatable episodes)."""
        for state in self._states.values():
            state.fired = False

    def reset(self) -> None:
        """Forget all bookkeeping (episode restart)."""
        self._states.clear()

    async def evaluate(
        self,
        triggers: Sequence[Union[Trigger, Mapping[str, Any]]],
        now_ms: Optional[int] = None,
    ) -> list[TriggerEvaluation]:
        """
        Evaluate every trigger once.

        Args:
            triggers: Trigger specs (raw mappings are validated here)
            now_ms: Evaluation timestamp

        Returns:
            One evaluation per trigger that could be evaluated, in input order
        """
        if now_ms is None:
            now_ms = int(self._clock() * 1000)

        evaluations: list[TriggerEvaluation] = []
        seen: set[str] = set()

        for index, raw in enumerate(triggers):
            trigger_id = _raw_id(raw)
            try:
                trigger = normalize_trigger(raw, index)
            except MalformedTriggerInputError as e:
                logger.warning(f"Price trigger {trigger_id} skipped: {e}")
                continue

            if trigger.id in seen:
                logger.warning(f"Price trigger {trigger.id} skipped: duplicate id")
                continue
            seen.add(trigger.id)

            try:
                evaluation = await self._evaluate_one(trigger, now_ms)
            except (LedgerError, PoolResolutionError, ArithmeticError) as e:
                logger.warning(f"Price trigger {trigger.id} skipped: {e}")
                continue

            evaluations.append(evaluation)

        return evaluations

    async def _evaluate_one(self, trigger: Trigger, now_ms: int) -> TriggerEvaluation:
        pool = await self.resolve_pool(trigger)
        meta = await self.load_pool_meta(pool)

        base_is_token0 = meta.token0 == trigger.base_token and meta.token1 == trigger.quote_token
        base_is_token1 = meta.token1 == trigger.base_token and meta.token0 == trigger.quote_token
        if not base_is_token0 and not base_is_token1:
            raise PoolResolutionError(
                f"pool {pool} does not match base/quote tokens "
                f"{trigger.base_token}/{trigger.quote_token}"
            )

        slot0 = await self._ledger.call(pool, UNISWAP_V3_POOL_ABI, "slot0")
        price = price_from_sqrt_price_x96(
            sqrt_price_x96=slot0[0],
            token0_decimals=self._cache.token_decimals[meta.token0],
            token1_decimals=self._cache.token_decimals[meta.token1],
            base_is_token0=base_is_token0,
        )

        matched = trigger.comparator.matches(price, trigger.threshold)
        state = self.state_for(trigger.id)
        emitted = matched and (not trigger.emit_once or not state.fired)

        state.last_matched = matched
        if emitted and trigger.emit_once:
            state.fired = True

        logger.debug(
            f"Trigger {trigger.id}: price={price:.8f} {trigger.comparator.value} "
            f"{trigger.threshold} matched={matched} emitted={emitted}"
        )

        return TriggerEvaluation(
            trigger_id=trigger.id,
            observed_price=price,
            matched=matched,
            emitted=emitted,
            priority=trigger.priority,
            pool=pool,
            pool_fee=meta.fee,
            base_token=trigger.base_token,
            quote_token=trigger.quote_token,
            comparator=trigger.comparator,
            threshold=trigger.threshold,
            evaluated_at_ms=now_ms,
            label=trigger.label,
        )

    async def _factory_address(self) -> str:
        if self._factory:
            return self._factory
        chain_id = await self._ledger.get_chain_id()
        factory = DEFAULT_FACTORY_BY_CHAIN.get(chain_id)
        if not factory:
            raise PoolResolutionError(
                f"No Uniswap V3 factory configured for chainId {chain_id}; "
                f"set UNISWAP_V3_FACTORY"
            )
        return normalize_address(factory)

    async def resolve_pool(self, trigger: Trigger) -> str:
        """
        Resolve the pool a trigger reads its price from.

        Explicit pools are used as-is. Otherwise every fee tier is looked up via
        the factory and the pool with strictly the largest liquidity wins;
        ties keep the first enumerated tier.
        """
        if trigger.pool:
            return trigger.pool

        factory = await self._factory_address()
        best_pool: Optional[str] = None
        best_liquidity = -1

        for fee in self._fee_tiers:
            key = (trigger.base_token, trigger.quote_token, fee)
            if key in self._cache.factory_pools:
                pool = self._cache.factory_pools[key]
            else:
                raw_pool = await self._ledger.call(
                    factory,
                    UNISWAP_V3_FACTORY_ABI,
                    "getPool",
                    trigger.base_token,
                    trigger.quote_token,
                    fee,
                )
                pool = None
                if raw_pool and not is_zero_address(str(raw_pool)):
                    pool = normalize_address(str(raw_pool))
                self._cache.factory_pools[key] = pool

            if pool is None:
                continue

            liquidity = int(await self._ledger.call(pool, UNISWAP_V3_POOL_ABI, "liquidity"))
            if liquidity > best_liquidity:
                best_pool = pool
                best_liquidity = liquidity

        if best_pool is None:
            raise PoolResolutionError(
                f"No Uniswap V3 pool found for {trigger.base_token}/{trigger.quote_token} "
                f"across fee tiers {list(self._fee_tiers)}"
            )
        return best_pool

    async def load_pool_meta(self, pool: str) -> PoolMeta:
        """Load (and cache) token0/token1/fee plus both tokens' decimals."""
        meta = self._cache.pool_meta.get(pool)
        if meta is None:
            token0 = normalize_address(
                str(await self._ledger.call(pool, UNISWAP_V3_POOL_ABI, "token0"))
            )
            token1 = normalize_address(
                str(await self._ledger.call(pool, UNISWAP_V3_POOL_ABI, "token1"))
            )
            fee = int(await self._ledger.call(pool, UNISWAP_V3_POOL_ABI, "fee"))
            meta = PoolMeta(token0=token0, token1=token1, fee=fee)

        for token in (meta.token0, meta.token1):
            if token not in self._cache.token_decimals:
                self._cache.token_decimals[token] = int(
                    await self._ledger.call(token, ERC20_ABI, "decimals")
                )

        self._cache.pool_meta[pool] = meta
        return meta


def _raw_id(raw: Any) -> str:
    if isinstance(raw, Trigger):
        return raw.id
    if isinstance(raw, Mapping) and raw.get("id") is not None:
        return str(raw["id"])
    return "unknown-trigger"
