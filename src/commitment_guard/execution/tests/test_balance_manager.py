"""
Tests for the balance manager.
"""
import pytest

from commitment_guard.errors import InsufficientBalanceError
from commitment_guard.execution import BalanceConfig, BalanceManager


class FakeMonotonic:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def balances(ledger, addr, monotonic):
    ledger.set_balance(addr.weth, addr.safe, 5 * 10**17)
    return BalanceManager(ledger, addr.safe, BalanceConfig(cache_ttl_seconds=10), clock=monotonic)


class TestBalanceManager:
    @pytest.mark.asyncio
    async def test_reads_balance_of_owner(self, balances, addr):
        assert await balances.get_balance(addr.weth) == 5 * 10**17
        assert await balances.get_balance(addr.usdc) == 0

    @pytest.mark.asyncio
    async def test_caches_within_ttl(self, balances, ledger, addr, monotonic):
        await balances.get_balance(addr.weth)
        ledger.set_balance(addr.weth, addr.safe, 1)
        monotonic.now += 5

        assert await balances.get_balance(addr.weth.lower()) == 5 * 10**17
        assert ledger.count_calls("balanceOf") == 1

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self, balances, ledger, addr, monotonic):
        await balances.get_balance(addr.weth)
        ledger.set_balance(addr.weth, addr.safe, 1)
        monotonic.now += 11

        assert await balances.get_balance(addr.weth) == 1

    @pytest.mark.asyncio
    async def test_refresh_all_invalidates(self, balances, ledger, addr):
        await balances.get_balance(addr.weth)
        ledger.set_balance(addr.weth, addr.safe, 7)

        assert await balances.refresh_balance() is None
        assert await balances.get_balance(addr.weth) == 7

    @pytest.mark.asyncio
    async def test_refresh_one_token(self, balances, ledger, addr):
        await balances.get_balance(addr.weth)
        ledger.set_balance(addr.weth, addr.safe, 9)

        assert await balances.refresh_balance(addr.weth) == 9

    @pytest.mark.asyncio
    async def test_ensure_sufficient(self, balances, addr):
        assert await balances.ensure_sufficient(addr.weth, 10**17) == 5 * 10**17
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await balances.ensure_sufficient(addr.weth, 10**18)
        assert exc_info.value.available == 5 * 10**17
