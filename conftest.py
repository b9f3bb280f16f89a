"""
Shared test fixtures.

Nothing in the test suite talks to a real RPC node. FakeLedger stands in for
LedgerClient and models just enough of Uniswap V3 (factory, pools, quoters),
ERC-20 balances and the Optimistic Governor's event logs.

Layer-specific fixtures live in src/commitment_guard/{layer}/tests/conftest.py.
"""
from __future__ import annotations

from decimal import Decimal, localcontext
from types import SimpleNamespace
from typing import Any, Callable, Optional

import pytest
from web3 import Web3

from commitment_guard.chain.addresses import ZERO_ADDRESS, normalize_address
from commitment_guard.chain.client import (
    LedgerError,
    LogEntry,
    ReceiptNotFoundError,
    TransactionReceipt,
)


def _addr(hex_str: str) -> str:
    return Web3.to_checksum_address(hex_str.lower())


WETH = _addr("0x7b79995e5f793a07bc00c21412e50ecae098e7f9")
USDC = _addr("0x1c7d4b196cb0c7b01d743fbc6116a902379c7238")
UNI = _addr("0x1f9840a85d5af5bf1d1762f925bdaddc4201f984")
SAFE = _addr("0x1111111111111111111111111111111111111111")
ROUTER = _addr("0x3bfa4769fb09eefc5a80d6e87c3b9c650f7ae48e")
OTHER_ROUTER = _addr("0x2222222222222222222222222222222222222222")
GOVERNOR = _addr("0x3333333333333333333333333333333333333333")
AGENT = _addr("0x4444444444444444444444444444444444444444")
FACTORY = _addr("0x0227628f3f023bb0b980b67d528571c95c6dac1c")
QUOTER_A = _addr("0xed1f6473345f45b75f8179591dd5ba1888cf2fb3")
QUOTER_B = _addr("0xb27308f9f90d607463bb33ea1bebb41c27ce5ab6")
POOL_WETH_USDC_500 = _addr("0x5555555555555555555555555555555555555555")
POOL_WETH_USDC_3000 = _addr("0x6666666666666666666666666666666666666666")
POOL_UNI_WETH_3000 = _addr("0x7777777777777777777777777777777777777777")

SEPOLIA = 11155111


def sqrt_price_x96_for(price: Decimal, base_is_token0: bool, dec0: int, dec1: int) -> int:
    """Inverse of the evaluator's price formula (quote per base, human units)."""
    with localcontext() as ctx:
        ctx.prec = 80
        price = Decimal(str(price))
        if base_is_token0:
            raw = price * Decimal(10) ** (dec1 - dec0)
        else:
            raw = Decimal(10) ** (dec1 - dec0) / price
        return int(raw.sqrt() * Decimal(2) ** 96)


class FakeLedger:
    """In-memory LedgerClient stand-in."""

    def __init__(self, chain_id: int = SEPOLIA):
        self.chain_id = chain_id
        self.block_number = 0
        self.calls: list[tuple[str, str, tuple]] = []
        self.handlers: dict[tuple[str, str], Any] = {}
        self.balances: dict[tuple[str, str], int] = {}
        self.decimals: dict[str, int] = {}
        self.factory_pools: dict[tuple[str, str, int], str] = {}
        self.logs: list[tuple[str, LogEntry]] = []
        self.log_queries: list[tuple[str, int, int]] = []
        self.fail_logs: Optional[Exception] = None
        self.fail_block_number: Optional[Exception] = None
        self.receipts: dict[str, Any] = {}

    # ------------------------------------------------------------------ setup

    def set_call(self, address: str, function_name: str, result: Any) -> None:
        """result: a value, an exception instance, or a callable(*args)."""
        self.handlers[(normalize_address(address), function_name)] = result

    def add_token(self, token: str, decimals: int) -> None:
        self.decimals[normalize_address(token)] = decimals
        self.set_call(token, "decimals", decimals)

    def set_balance(self, token: str, owner: str, amount: int) -> None:
        self.balances[(normalize_address(token), normalize_address(owner))] = amount

    def add_pool(
        self,
        pool: str,
        base: str,
        quote: str,
        fee: int,
        price: Any,
        liquidity: int = 10**18,
        factory: Optional[str] = None,
    ) -> None:
        """Register a pool whose price is `price` quote per base."""
        base, quote = normalize_address(base), normalize_address(quote)
        token0, token1 = sorted([base, quote], key=lambda a: a.lower())
        self.set_call(pool, "token0", token0)
        self.set_call(pool, "token1", token1)
        self.set_call(pool, "fee", fee)
        self.set_call(pool, "liquidity", liquidity)
        self.set_price(pool, base, quote, price)

        if factory is not None:
            self.factory_pools[(base, quote, fee)] = normalize_address(pool)
            self.factory_pools[(quote, base, fee)] = normalize_address(pool)

            def _get_pool(token_a, token_b, fee_tier):
                key = (normalize_address(token_a), normalize_address(token_b), int(fee_tier))
                return self.factory_pools.get(key, ZERO_ADDRESS)

            self.set_call(factory, "getPool", _get_pool)

    def set_price(self, pool: str, base: str, quote: str, price: Any) -> None:
        base, quote = normalize_address(base), normalize_address(quote)
        base_is_token0 = base.lower() < quote.lower()
        dec0 = self.decimals[base if base_is_token0 else quote]
        dec1 = self.decimals[quote if base_is_token0 else base]
        sqrt_price = sqrt_price_x96_for(Decimal(str(price)), base_is_token0, dec0, dec1)
        self.set_call(pool, "slot0", (sqrt_price, 0, 0, 1, 1, 0, True))

    def add_log(
        self,
        event: str,
        block_number: int,
        proposal_hash: str,
        log_index: int = 0,
        proposer: Optional[str] = None,
        transaction_hash: Optional[str] = None,
        address: str = GOVERNOR,
    ) -> None:
        args: dict[str, Any] = {"proposalHash": proposal_hash}
        if proposer is not None:
            args["proposer"] = normalize_address(proposer)
        entry = LogEntry(
            event=event,
            block_number=block_number,
            log_index=log_index,
            transaction_hash=transaction_hash,
            args=args,
        )
        self.logs.append((normalize_address(address), entry))

    # ------------------------------------------------------------- interface

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_block_number(self) -> int:
        if self.fail_block_number is not None:
            raise self.fail_block_number
        return self.block_number

    async def call(self, address: str, abi: list, function_name: str, *args: Any) -> Any:
        address = normalize_address(address)
        self.calls.append((address, function_name, args))
        handler = self.handlers.get((address, function_name))
        if handler is None:
            raise LedgerError(f"{function_name}@{address} reverted", operation=function_name)
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(*args)
        return handler

    async def get_erc20_balance(self, token: str, owner: str) -> int:
        self.calls.append((normalize_address(token), "balanceOf", (owner,)))
        return self.balances.get((normalize_address(token), normalize_address(owner)), 0)

    async def get_logs(
        self,
        address: str,
        abi: list,
        event_name: str,
        from_block: int,
        to_block: int,
        argument_filters: Optional[dict] = None,
    ) -> list[LogEntry]:
        self.log_queries.append((event_name, from_block, to_block))
        if self.fail_logs is not None:
            raise self.fail_logs
        address = normalize_address(address)
        matched = []
        for log_address, entry in self.logs:
            if log_address != address or entry.event != event_name:
                continue
            if not from_block <= entry.block_number <= to_block:
                continue
            if argument_filters and any(
                entry.args.get(k) != v for k, v in argument_filters.items()
            ):
                continue
            matched.append(entry)
        return sorted(matched, key=lambda e: e.position)

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt:
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            raise ReceiptNotFoundError(f"Transaction {tx_hash} not found")
        if isinstance(receipt, Exception):
            raise receipt
        return receipt

    def count_calls(self, function_name: str) -> int:
        return sum(1 for _, fn, _ in self.calls if fn == function_name)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def addr() -> SimpleNamespace:
    """Well-known test addresses."""
    return SimpleNamespace(
        weth=WETH,
        usdc=USDC,
        uni=UNI,
        safe=SAFE,
        router=ROUTER,
        other_router=OTHER_ROUTER,
        governor=GOVERNOR,
        agent=AGENT,
        factory=FACTORY,
        quoter_a=QUOTER_A,
        quoter_b=QUOTER_B,
        pool_weth_usdc_500=POOL_WETH_USDC_500,
        pool_weth_usdc_3000=POOL_WETH_USDC_3000,
        pool_uni_weth_3000=POOL_UNI_WETH_3000,
    )


@pytest.fixture
def ledger() -> FakeLedger:
    """Fake ledger on Sepolia with WETH (18), USDC (6) and UNI (18)."""
    fake = FakeLedger()
    fake.add_token(WETH, 18)
    fake.add_token(USDC, 6)
    fake.add_token(UNI, 18)
    return fake


@pytest.fixture
def market(ledger: FakeLedger) -> FakeLedger:
    """
    Ledger with pools:
        WETH/USDC fee 500  @ 2000 USDC per WETH, liquidity 10**15
        WETH/USDC fee 3000 @ 2000 USDC per WETH, liquidity 10**18 (deepest)
        UNI/WETH  fee 3000 @ 0.025 WETH per UNI
    """
    ledger.add_pool(POOL_WETH_USDC_500, WETH, USDC, 500, "2000", liquidity=10**15, factory=FACTORY)
    ledger.add_pool(POOL_WETH_USDC_3000, WETH, USDC, 3000, "2000", liquidity=10**18, factory=FACTORY)
    ledger.add_pool(POOL_UNI_WETH_3000, UNI, WETH, 3000, "0.025", factory=FACTORY)
    return ledger


def quoter_handler(v2: Any = None, v1: Any = None) -> Callable:
    """
    Handler for quoteExactInputSingle on one quoter address.

    QuoterV2 is called with a single params tuple, QuoterV1 with five
    positional arguments. None means that interface reverts.
    """

    def _quote(*args):
        is_v2 = len(args) == 1
        outcome = v2 if is_v2 else v1
        if outcome is None:
            raise LedgerError("execution reverted", operation="quoteExactInputSingle")
        if isinstance(outcome, Exception):
            raise outcome
        return (outcome, 0, 0, 0) if is_v2 else outcome

    return _quote


@pytest.fixture
def make_quoter() -> Callable[..., Callable]:
    return quoter_handler
