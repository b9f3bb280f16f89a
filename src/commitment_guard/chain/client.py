"""
Async ledger client built on web3.py.

This is the only place the guard talks to an RPC node. Every call is bounded
by a timeout; a call that fails or times out raises LedgerError for that call
only and callers decide whether that is fatal for the trigger, the quote, or
nothing at all.

Usage:
    async with LedgerClient(rpc_url, timeout=10.0) as ledger:
        block = await ledger.get_block_number()
        decimals = await ledger.call(token, ERC20_ABI, "decimals")
        logs = await ledger.get_logs(governor, OPTIMISTIC_GOVERNOR_EVENTS_ABI,
                                     "ProposalExecuted", from_block, to_block)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional, TypeVar

from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound

from .abis import ERC20_ABI

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerError(Exception):
    """Raised when a ledger read fails or times out."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class ReceiptNotFoundError(LedgerError):
    """The transaction is unknown to the node (pending, dropped, or bogus)."""


@dataclass(frozen=True)
class LogEntry:
    """A decoded event log."""

    event: str
    block_number: int
    log_index: int
    transaction_hash: Optional[str]
    args: dict = field(default_factory=dict)

    @property
    def position(self) -> tuple[int, int]:
        """Ordering key within the chain."""
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class TransactionReceipt:
    """The subset of a receipt the guard cares about."""

    transaction_hash: str
    status: int
    block_number: Optional[int] = None

    @property
    def reverted(self) -> bool:
        return self.status == 0


def _to_plain(value: Any) -> Any:
    """Convert web3 return values (HexBytes, AttributeDict) to plain python."""
    if isinstance(value, (bytes, bytearray)):
        return AsyncWeb3.to_hex(value)
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_plain(v) for v in value]
    if isinstance(value, tuple):
        return tuple(_to_plain(v) for v in value)
    return value


class LedgerClient:
    """
    Thin async facade over AsyncWeb3.

    Exposes the read surface the guard needs: chain id, block height, contract
    reads, event logs and transaction receipts.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        web3: Optional[AsyncWeb3] = None,
        timeout: float = 10.0,
    ) -> None:
        """
        Initialize the ledger client.

        Args:
            rpc_url: HTTP RPC endpoint (ignored if web3 is given)
            web3: Pre-built AsyncWeb3 instance
            timeout: Per-call timeout in seconds
        """
        if web3 is None:
            if not rpc_url:
                raise ValueError("LedgerClient requires rpc_url or web3")
            web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._w3 = web3
        self._timeout = timeout
        self._chain_id: Optional[int] = None

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        provider = getattr(self._w3, "provider", None)
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            try:
                await disconnect()
            except Exception as e:
                logger.debug(f"Ignoring provider disconnect error: {e}")

    @property
    def web3(self) -> AsyncWeb3:
        return self._w3

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            raise LedgerError(
                f"{operation} timed out after {self._timeout}s", operation=operation
            ) from e
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerError(f"{operation} failed: {e}", operation=operation) from e

    async def get_chain_id(self) -> int:
        """Chain id, read once and cached."""
        if self._chain_id is None:
            self._chain_id = int(await self._bounded("eth_chainId", self._w3.eth.chain_id))
        return self._chain_id

    async def get_block_number(self) -> int:
        return int(await self._bounded("eth_blockNumber", self._w3.eth.block_number))

    async def call(self, address: str, abi: list, function_name: str, *args: Any) -> Any:
        """
        Execute a read-only contract call (eth_call).

        Args:
            address: Contract address
            abi: Contract ABI containing the function
            function_name: Function to call
            *args: Positional function arguments

        Returns:
            Decoded return value(s)
        """
        contract = self._w3.eth.contract(address=address, abi=abi)
        fn = getattr(contract.functions, function_name)(*args)
        result = await self._bounded(f"{function_name}@{address}", fn.call())
        return _to_plain(result)

    async def get_erc20_balance(self, token: str, owner: str) -> int:
        return int(await self.call(token, ERC20_ABI, "balanceOf", owner))

    async def get_logs(
        self,
        address: str,
        abi: list,
        event_name: str,
        from_block: int,
        to_block: int,
        argument_filters: Optional[dict] = None,
    ) -> list[LogEntry]:
        """
        Fetch and decode logs for one event of one contract in [from_block, to_block].

        Returns:
            Logs in chain order
        """
        contract = self._w3.eth.contract(address=address, abi=abi)
        event = getattr(contract.events, event_name)
        kwargs: dict[str, Any] = {"from_block": from_block, "to_block": to_block}
        if argument_filters:
            kwargs["argument_filters"] = argument_filters
        raw_logs = await self._bounded(
            f"getLogs({event_name}, {from_block}-{to_block})",
            event.get_logs(**kwargs),
        )

        entries = [
            LogEntry(
                event=event_name,
                block_number=int(log["blockNumber"]),
                log_index=int(log["logIndex"]),
                transaction_hash=_to_plain(log.get("transactionHash")),
                args=_to_plain(dict(log["args"])),
            )
            for log in raw_logs
        ]
        entries.sort(key=lambda e: e.position)
        return entries

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt:
        """
        Fetch a transaction receipt.

        Raises:
            ReceiptNotFoundError: If the node does not know the transaction
            LedgerError: On any other failure
        """
        try:
            receipt = await self._bounded(
                f"getTransactionReceipt({tx_hash})",
                self._w3.eth.get_transaction_receipt(tx_hash),
            )
        except LedgerError as e:
            if isinstance(e.__cause__, TransactionNotFound):
                raise ReceiptNotFoundError(str(e), operation=e.operation) from e
            raise

        return TransactionReceipt(
            transaction_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
        )
