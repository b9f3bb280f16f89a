"""
Quote resolution with slippage and quoter interface fallback.

Uniswap deploys two incompatible quoter interfaces at different addresses:

    QuoterV2: quoteExactInputSingle((tokenIn, tokenOut, amountIn, fee, limit))
              returns (amountOut, sqrtPriceX96After, ticksCrossed, gasEstimate)
    QuoterV1: quoteExactInputSingle(tokenIn, tokenOut, fee, amountIn, limit)
              returns amountOut

Each candidate address is tried with V2 first, then V1. The first success
wins. Both interfaces are simulated through eth_call, nothing is sent.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from commitment_guard.chain.abis import QUOTER_V1_ABI, QUOTER_V2_ABI
from commitment_guard.chain.addresses import DEFAULT_QUOTERS_BY_CHAIN, normalize_address
from commitment_guard.chain.client import LedgerClient, LedgerError
from commitment_guard.errors import QuoteUnavailableError

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000
DEFAULT_SLIPPAGE_BPS = 50


@dataclass(frozen=True)
class QuoteResult:
    """A live quote and the minimum output derived from it."""

    source_used: str
    interface: str
    token_in: str
    token_out: str
    fee: int
    amount_in: int
    quoted_amount_out: int
    min_amount_out: int
    slippage_bps: int


def validate_slippage_bps(slippage_bps: int) -> int:
    if isinstance(slippage_bps, bool) or not isinstance(slippage_bps, int):
        raise ValueError(f"slippage_bps must be an integer, got {slippage_bps!r}")
    if slippage_bps < 0 or slippage_bps >= BPS_DENOMINATOR:
        raise ValueError(f"slippage_bps must be in [0, {BPS_DENOMINATOR}), got {slippage_bps}")
    return slippage_bps


def apply_slippage(quoted_amount_out: int, slippage_bps: int) -> int:
    """floor(quoted * (10000 - bps) / 10000), in integer arithmetic."""
    validate_slippage_bps(slippage_bps)
    return (int(quoted_amount_out) * (BPS_DENOMINATOR - slippage_bps)) // BPS_DENOMINATOR


class QuoteResolver:
    """
    Resolves a live exact-input quote for a swap.

    Usage:
        resolver = QuoteResolver(ledger, slippage_bps=50)
        quote = await resolver.quote(weth, usdc, fee=3000, amount_in=10**16)
        quote.min_amount_out  # pinned into the action
    """

    def __init__(
        self,
        ledger: LedgerClient,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        quoter_override: Optional[Union[str, Sequence[str]]] = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            ledger: Ledger read surface
            slippage_bps: Default slippage budget in basis points
            quoter_override: Quoter address or ordered list; replaces the
                chain default list when given
        """
        self._ledger = ledger
        self._slippage_bps = validate_slippage_bps(slippage_bps)
        if isinstance(quoter_override, str):
            quoter_override = [quoter_override]
        self._override = [normalize_address(q) for q in quoter_override or []]

    @property
    def slippage_bps(self) -> int:
        return self._slippage_bps

    async def resolve_candidates(self) -> list[str]:
        """Ordered quoter candidates: override first, else chain defaults."""
        if self._override:
            return list(self._override)
        chain_id = await self._ledger.get_chain_id()
        defaults = DEFAULT_QUOTERS_BY_CHAIN.get(chain_id, ())
        return [normalize_address(q) for q in defaults]

    async def _quote_v2(
        self, quoter: str, token_in: str, token_out: str, fee: int, amount_in: int
    ) -> int:
        result = await self._ledger.call(
            quoter,
            QUOTER_V2_ABI,
            "quoteExactInputSingle",
            (token_in, token_out, amount_in, fee, 0),
        )
        if isinstance(result, (list, tuple)):
            result = result[0]
        return int(result)

    async def _quote_v1(
        self, quoter: str, token_in: str, token_out: str, fee: int, amount_in: int
    ) -> int:
        result = await self._ledger.call(
            quoter,
            QUOTER_V1_ABI,
            "quoteExactInputSingle",
            token_in,
            token_out,
            fee,
            amount_in,
            0,
        )
        if isinstance(result, (list, tuple)):
            result = result[0]
        return int(result)

    async def quote(
        self,
        token_in: str,
        token_out: str,
        fee: int,
        amount_in: int,
        slippage_bps: Optional[int] = None,
    ) -> QuoteResult:
        """
        Quote an exact-input single-pool swap.

        Args:
            token_in: Token sold
            token_out: Token bought
            fee: Pool fee tier
            amount_in: Exact input amount in base units
            slippage_bps: Override of the default slippage budget

        Returns:
            QuoteResult from the first candidate/interface that answered

        Raises:
            QuoteUnavailableError: No candidates, every attempt failed, or the
                output is zero after slippage
        """
        bps = self._slippage_bps if slippage_bps is None else validate_slippage_bps(slippage_bps)
        token_in = normalize_address(token_in)
        token_out = normalize_address(token_out)
        fee = int(fee)
        amount_in = int(amount_in)

        candidates = await self.resolve_candidates()
        if not candidates:
            chain_id = await self._ledger.get_chain_id()
            raise QuoteUnavailableError(
                f"No Uniswap V3 quoter configured for chainId {chain_id}; set UNISWAP_V3_QUOTER"
            )

        failures: list[str] = []
        for quoter in candidates:
            for interface, attempt in (("v2", self._quote_v2), ("v1", self._quote_v1)):
                try:
                    quoted = await attempt(quoter, token_in, token_out, fee, amount_in)
                except LedgerError as e:
                    failures.append(f"{quoter} ({interface}): {e}")
                    logger.debug(f"Quoter {quoter} {interface} failed: {e}")
                    continue

                if quoted <= 0:
                    raise QuoteUnavailableError(
                        f"Quoter returned non-positive output {quoted} from {quoter}"
                    )

                min_out = apply_slippage(quoted, bps)
                if min_out <= 0:
                    raise QuoteUnavailableError(
                        f"Quoted output too small after slippage: quoted={quoted} bps={bps}"
                    )

                logger.info(
                    f"Quote {amount_in} {token_in} -> {quoted} {token_out} "
                    f"(fee {fee}, {interface} @ {quoter}); minOut={min_out}"
                )
                return QuoteResult(
                    source_used=quoter,
                    interface=interface,
                    token_in=token_in,
                    token_out=token_out,
                    fee=fee,
                    amount_in=amount_in,
                    quoted_amount_out=quoted,
                    min_amount_out=min_out,
                    slippage_bps=bps,
                )

        raise QuoteUnavailableError(
            "Failed to quote Uniswap V3 swap across candidates: " + "; ".join(failures),
            failures=failures,
        )
