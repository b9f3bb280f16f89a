"""
Balance Manager for the commitment account's ERC-20 holdings.

Balances are cached per token for a short TTL so one cycle does not read the
same balance twice. The engine drops the cache at the start of every cycle and
after a submission report: a balance that moved between cycles must never size
the next action.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from commitment_guard.chain.addresses import normalize_address
from commitment_guard.chain.client import LedgerClient
from commitment_guard.errors import InsufficientBalanceError

logger = logging.getLogger(__name__)


@dataclass
class BalanceConfig:
    """Configuration for balance management."""

    cache_ttl_seconds: float = 15.0  # How long to cache a balance


@dataclass
class _CachedBalance:
    amount: int
    fetched_at: float


class BalanceManager:
    """
    Tracks ERC-20 balances of the commitment account.

    Usage:
        manager = BalanceManager(ledger, commitment_safe)

        available = await manager.get_balance(weth)
        await manager.ensure_sufficient(weth, amount_in)

        # After a submission report
        await manager.refresh_balance(weth)
    """

    def __init__(
        self,
        ledger: LedgerClient,
        owner: str,
        config: Optional[BalanceConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the balance manager.

        Args:
            ledger: Ledger read surface
            owner: Commitment account whose balances are tracked
            config: Balance configuration
            clock: Monotonic time source, for tests
        """
        self._ledger = ledger
        self._owner = normalize_address(owner)
        self._config = config or BalanceConfig()
        self._clock = clock or time.monotonic
        self._cache: dict[str, _CachedBalance] = {}

    @property
    def owner(self) -> str:
        return self._owner

    async def get_balance(self, token: str) -> int:
        """
        Get the balance of a token, from cache if still fresh.

        Raises:
            LedgerError: If the balance cannot be read
        """
        token = normalize_address(token)
        cached = self._cache.get(token)
        if cached is not None:
            age = self._clock() - cached.fetched_at
            if age < self._config.cache_ttl_seconds:
                return cached.amount
        return await self._fetch_balance(token)

    async def refresh_balance(self, token: Optional[str] = None) -> Optional[int]:
        """
        Drop cached balances and optionally re-read one token.

        Args:
            token: Token to re-read; None just invalidates everything

        Returns:
            Fresh balance of token, or None when no token was given
        """
        if token is None:
            self._cache.clear()
            return None
        token = normalize_address(token)
        self._cache.pop(token, None)
        return await self._fetch_balance(token)

    async def ensure_sufficient(self, token: str, required: int) -> int:
        """
        Check that the commitment account holds at least `required`.

        Returns:
            The available balance

        Raises:
            InsufficientBalanceError: If the balance is too low
        """
        available = await self.get_balance(token)
        if int(required) > available:
            raise InsufficientBalanceError(
                token=normalize_address(token), required=int(required), available=available
            )
        return available

    async def _fetch_balance(self, token: str) -> int:
        balance = await self._ledger.get_erc20_balance(token, self._owner)
        self._cache[token] = _CachedBalance(amount=balance, fetched_at=self._clock())
        logger.debug(f"Balance of {token} for {self._owner}: {balance}")
        return balance
