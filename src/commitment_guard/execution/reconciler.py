"""
Ledger reconciliation for the execution guard.

Three jobs:

    reconcile_once         one proactive backward log scan per process, so a
                           restart picks up proposals, executions and
                           deletions that happened while the guard was down
    poll_proposal_events   forward poll of ProposalExecuted/ProposalDeleted
                           from the last checked block, every cycle
    check_submission       receipt check of the pending submission; a reverted
                           or timed-out submission releases the lock

Log scans only prove what has been observed. An empty scan means "not
observed yet", never "did not happen".
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from commitment_guard.chain.abis import (
    OPTIMISTIC_GOVERNOR_EVENTS_ABI,
    PROPOSAL_DELETED,
    PROPOSAL_EXECUTED,
    TRANSACTIONS_PROPOSED,
)
from commitment_guard.chain.addresses import normalize_address, normalize_hash
from commitment_guard.chain.client import (
    LedgerClient,
    LedgerError,
    LogEntry,
    ReceiptNotFoundError,
)
from commitment_guard.errors import ReconciliationIOError

from .execution_guard import (
    ExecutionGuard,
    LockState,
    SubmissionOutcome,
    SubmissionReport,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 50_000
DEFAULT_CONFIRM_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class ScanResult:
    """Outcome of a backward log scan."""

    executed_ref: Optional[str] = None
    pending_ref: Optional[str] = None
    pending_tx_hash: Optional[str] = None
    scanned_to_block: Optional[int] = None
    deleted_refs: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ProposalEvents:
    """Executed and deleted proposal hashes seen since the last poll, oldest first."""

    executed: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    from_block: Optional[int] = None
    to_block: Optional[int] = None

    def __bool__(self) -> bool:
        return bool(self.executed or self.deleted)


def _proposal_hash(entry: LogEntry) -> Optional[str]:
    return normalize_hash(entry.args.get("proposalHash"))


class LedgerReconciler:
    """
    Reconciles the guard against the Optimistic Governor's event logs.

    Usage:
        reconciler = LedgerReconciler(ledger, og_module, start_block=5_000_000)
        await reconciler.reconcile_once(guard)     # once per process
        events = await reconciler.poll_proposal_events()  # every cycle
        await reconciler.check_submission(guard)   # every cycle
    """

    def __init__(
        self,
        ledger: LedgerClient,
        governor_address: str,
        start_block: int = 0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        confirmations: int = 0,
        proposer: Optional[str] = None,
        confirm_timeout_seconds: float = DEFAULT_CONFIRM_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            ledger: Ledger read surface
            governor_address: Optimistic Governor module address
            start_block: Lowest block to scan
            chunk_size: Blocks per getLogs request
            confirmations: Blocks below the head to ignore (reorg margin)
            proposer: Only count proposals from this address when set
            confirm_timeout_seconds: How long a missing receipt is tolerated
            clock: Time source in seconds, for tests
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if confirmations < 0:
            raise ValueError(f"confirmations must be non-negative, got {confirmations}")
        self._ledger = ledger
        self._governor = normalize_address(governor_address)
        self._start_block = max(0, int(start_block))
        self._chunk_size = int(chunk_size)
        self._confirmations = int(confirmations)
        self._proposer = normalize_address(proposer) if proposer else None
        self._confirm_timeout_seconds = confirm_timeout_seconds
        self._clock = clock or time.time
        self._reconciled = False
        self._last_checked_block: Optional[int] = None

    @property
    def reconciled(self) -> bool:
        return self._reconciled

    @property
    def last_checked_block(self) -> Optional[int]:
        return self._last_checked_block

    async def _head(self) -> int:
        try:
            latest = await self._ledger.get_block_number()
        except LedgerError as e:
            raise ReconciliationIOError(f"Cannot read block height: {e}") from e
        return latest - self._confirmations

    async def _events(self, event_name: str, from_block: int, to_block: int, **kwargs) -> list[LogEntry]:
        return await self._ledger.get_logs(
            self._governor,
            OPTIMISTIC_GOVERNOR_EVENTS_ABI,
            event_name,
            from_block,
            to_block,
            **kwargs,
        )

    async def _fetch_chunk(self, from_block: int, to_block: int) -> list[LogEntry]:
        proposer_filter = {"proposer": self._proposer} if self._proposer else None
        proposed = await self._events(
            TRANSACTIONS_PROPOSED, from_block, to_block, argument_filters=proposer_filter
        )
        executed = await self._events(PROPOSAL_EXECUTED, from_block, to_block)
        deleted = await self._events(PROPOSAL_DELETED, from_block, to_block)
        return proposed + executed + deleted

    async def scan(self) -> ScanResult:
        """
        Walk the governor's logs newest-first until something decisive shows up.

        The first ProposalExecuted seen closes the episode. The first
        TransactionsProposed whose hash has not been deleted by a later event
        is the pending proposal. With a proposer filter, executions carry no
        proposer, so they only count once the matching (older) proposal is
        reached. Hashes are remembered across chunk boundaries, so the chunk
        size never changes the result. Deletions seen on the way are returned
        so a stale local reference can be released.

        Raises:
            ReconciliationIOError: If the head or any chunk cannot be read
        """
        to_block = await self._head()
        if to_block < self._start_block:
            return ScanResult(scanned_to_block=to_block)

        deleted_hashes: set[str] = set()
        executed_hashes: set[str] = set()
        upper = to_block

        def _result(**kwargs) -> ScanResult:
            return ScanResult(
                scanned_to_block=to_block, deleted_refs=frozenset(deleted_hashes), **kwargs
            )

        while upper >= self._start_block:
            lower = max(self._start_block, upper - self._chunk_size + 1)
            try:
                entries = await self._fetch_chunk(lower, upper)
            except LedgerError as e:
                raise ReconciliationIOError(
                    f"Log scan failed for blocks {lower}-{upper}: {e}"
                ) from e

            for entry in sorted(entries, key=lambda e: e.position, reverse=True):
                proposal_hash = _proposal_hash(entry)
                if entry.event == PROPOSAL_EXECUTED:
                    if not self._proposer:
                        return _result(executed_ref=proposal_hash)
                    if proposal_hash:
                        executed_hashes.add(proposal_hash)
                    continue
                if entry.event == PROPOSAL_DELETED:
                    if proposal_hash:
                        deleted_hashes.add(proposal_hash)
                    continue
                if entry.event == TRANSACTIONS_PROPOSED and proposal_hash:
                    if proposal_hash in executed_hashes:
                        return _result(executed_ref=proposal_hash)
                    if proposal_hash in deleted_hashes:
                        continue
                    return _result(
                        pending_ref=proposal_hash,
                        pending_tx_hash=entry.transaction_hash,
                    )

            upper = lower - 1

        return _result()

    async def reconcile_once(self, guard: ExecutionGuard) -> Optional[ScanResult]:
        """
        Hydrate the guard from the ledger, once per process.

        Returns:
            The scan result, or None if a scan already succeeded earlier

        Raises:
            ReconciliationIOError: Scan failed; the guard is unchanged and the
                next call retries
        """
        if self._reconciled:
            return None

        result = await self.scan()
        self._reconciled = True
        self._last_checked_block = result.scanned_to_block

        if result.executed_ref is not None:
            if guard.state is not LockState.CLOSED:
                logger.info(f"Ledger shows proposal {result.executed_ref} executed")
                await guard.close(result.executed_ref)
            return result

        if guard.state is LockState.ENGAGED:
            mine = {guard.proposal_ref, guard.transaction_hash} - {None}
            deleted = mine & result.deleted_refs
            if deleted:
                await guard.release(f"ledger shows proposal {sorted(deleted)[0]} deleted")

        if result.pending_ref is not None:
            if guard.state is LockState.UNLOCKED or (
                guard.state is LockState.ENGAGED and guard.proposal_ref != result.pending_ref
            ):
                logger.info(f"Ledger shows pending proposal {result.pending_ref}")
                await guard.engage(
                    result.pending_ref,
                    transaction_hash=result.pending_tx_hash,
                    force=True,
                )
        else:
            logger.info(
                f"Ledger scan up to block {result.scanned_to_block} observed no pending proposal"
            )

        return result

    async def poll_proposal_events(self) -> ProposalEvents:
        """
        Read executions and deletions since the last checked block.

        Only runs after reconcile_once succeeded. The checkpoint advances
        only when every chunk was read, so a failed poll is retried from the
        same block.

        Raises:
            ReconciliationIOError: If the head or a chunk cannot be read
        """
        if not self._reconciled or self._last_checked_block is None:
            return ProposalEvents()

        to_block = await self._head()
        from_block = max(self._start_block, self._last_checked_block + 1)
        if to_block < from_block:
            return ProposalEvents()

        entries: list[LogEntry] = []
        lower = from_block
        while lower <= to_block:
            upper = min(to_block, lower + self._chunk_size - 1)
            try:
                entries += await self._events(PROPOSAL_EXECUTED, lower, upper)
                entries += await self._events(PROPOSAL_DELETED, lower, upper)
            except LedgerError as e:
                raise ReconciliationIOError(
                    f"Proposal event poll failed for blocks {lower}-{upper}: {e}"
                ) from e
            lower = upper + 1

        executed: list[str] = []
        deleted: list[str] = []
        for entry in sorted(entries, key=lambda e: e.position):
            proposal_hash = _proposal_hash(entry)
            if not proposal_hash:
                continue
            if entry.event == PROPOSAL_EXECUTED:
                executed.append(proposal_hash)
            else:
                deleted.append(proposal_hash)

        self._last_checked_block = to_block
        events = ProposalEvents(
            executed=executed, deleted=deleted, from_block=from_block, to_block=to_block
        )
        if events:
            logger.info(
                f"Governor events in blocks {from_block}-{to_block}: "
                f"executed={executed}, deleted={deleted}"
            )
        return events

    async def check_submission(self, guard: ExecutionGuard) -> LockState:
        """
        Check the receipt of the pending submission.

        Raises:
            ReconciliationIOError: Receipt not available yet and the confirm
                window has not elapsed
        """
        if guard.state is not LockState.ENGAGED:
            return guard.state

        tx_hash = guard.transaction_hash or guard.proposal_ref
        if not tx_hash:
            return guard.state

        try:
            receipt = await self._ledger.get_transaction_receipt(tx_hash)
        except LedgerError as e:
            submitted_at_ms = guard.submitted_at_ms
            elapsed = (
                self._clock() - submitted_at_ms / 1000 if submitted_at_ms is not None else None
            )
            if elapsed is not None and elapsed > self._confirm_timeout_seconds:
                logger.warning(
                    f"No receipt for {tx_hash} after {elapsed:.0f}s; releasing lock"
                )
                return await guard.report(
                    SubmissionReport(
                        outcome=SubmissionOutcome.TIMEOUT,
                        transaction_hash=guard.transaction_hash,
                        proposal_ref=guard.proposal_ref,
                        error=str(e),
                    )
                )
            kind = "not found yet" if isinstance(e, ReceiptNotFoundError) else "unavailable"
            raise ReconciliationIOError(f"Receipt for {tx_hash} {kind}: {e}") from e

        if receipt.reverted:
            logger.warning(f"Submission {tx_hash} reverted in block {receipt.block_number}")
            return await guard.report(
                SubmissionReport(
                    outcome=SubmissionOutcome.RECEIPT_REVERTED,
                    transaction_hash=guard.transaction_hash,
                    proposal_ref=guard.proposal_ref,
                )
            )

        return guard.state
