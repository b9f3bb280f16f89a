"""
Persisted single-fire execution lock.

State machine:

    UNLOCKED --engage(ref)--> ENGAGED --close(ref)---> CLOSED      (single-shot)
                                 |    --close(ref)---> UNLOCKED    (repeatable)
                                 +----release(why)--> UNLOCKED

Confirmation that a proposal executed arrives late and unreliably (callback,
governor notification, or a ledger log scan), so every transition is written
to the durable record before it takes effect in memory. While ENGAGED or
CLOSED the guard refuses new actions with LockEngagedError.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from commitment_guard.chain.addresses import normalize_hash
from commitment_guard.errors import LockEngagedError
from commitment_guard.storage.lock_store import LockStore
from commitment_guard.storage.models import ExecutionLockRecord

logger = logging.getLogger(__name__)


class LockState(str, Enum):
    UNLOCKED = "unlocked"
    ENGAGED = "engaged"
    CLOSED = "closed"


class SubmissionOutcome(str, Enum):
    """What happened to a submission, as reported by the submitter."""

    SUBMITTED_OK = "submitted_ok"
    SUBMITTED_ERROR = "submitted_error"
    RECEIPT_REVERTED = "receipt_reverted"
    TIMEOUT = "timeout"


class EpisodeMode(str, Enum):
    SINGLE_SHOT = "single_shot"
    REPEATABLE = "repeatable"


@dataclass(frozen=True)
class SubmissionReport:
    """Result of handing an action to the external submitter."""

    outcome: SubmissionOutcome
    proposal_ref: Optional[str] = None
    transaction_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def resolved_ref(self) -> Optional[str]:
        """Proposal hash if known, else the transaction hash."""
        return _norm_ref(self.proposal_ref) or _norm_ref(self.transaction_hash)


def _norm_ref(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = normalize_hash(value)
    if normalized:
        return normalized
    text = str(value).strip()
    return text or None


def _now_ms() -> int:
    return int(time.time() * 1000)


class ExecutionGuard:
    """
    Single-fire lock backed by a LockStore.

    Usage:
        guard = ExecutionGuard(FileLockStore(path))
        await guard.hydrate()

        guard.ensure_unlocked()              # raises LockEngagedError
        await guard.report(SubmissionReport(SubmissionOutcome.SUBMITTED_OK,
                                            proposal_ref=proposal_hash))
        await guard.apply_proposal_events(executed=[proposal_hash])
    """

    def __init__(
        self,
        store: LockStore,
        episode_mode: EpisodeMode = EpisodeMode.SINGLE_SHOT,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """
        Initialize the guard.

        Args:
            store: Durable record store
            episode_mode: SINGLE_SHOT closes permanently on execution,
                REPEATABLE re-arms after each execution
            clock: Millisecond time source, for tests
        """
        self._store = store
        self._episode_mode = episode_mode
        self._clock = clock or _now_ms
        self._record = ExecutionLockRecord()
        self._hydrated = False
        self._close_listeners: list[Callable[[], None]] = []

    # =========================================================================
    # Read surface
    # =========================================================================

    @property
    def episode_mode(self) -> EpisodeMode:
        return self._episode_mode

    @property
    def state(self) -> LockState:
        if self._record.closed:
            return LockState.CLOSED
        if self._record.submitted:
            return LockState.ENGAGED
        return LockState.UNLOCKED

    @property
    def record(self) -> ExecutionLockRecord:
        return self._record.model_copy(deep=True)

    @property
    def proposal_ref(self) -> Optional[str]:
        return self._record.proposal_ref

    @property
    def transaction_hash(self) -> Optional[str]:
        return self._record.transaction_hash

    @property
    def submitted_at_ms(self) -> Optional[int]:
        return self._record.submitted_at_ms

    @property
    def fired_trigger_ids(self) -> frozenset[str]:
        return frozenset(self._record.fired_trigger_ids)

    def add_close_listener(self, listener: Callable[[], None]) -> None:
        """Called after a repeatable episode re-arms on execution."""
        self._close_listeners.append(listener)

    def ensure_unlocked(self) -> None:
        """
        Gate for new actions.

        Raises:
            LockEngagedError: If a proposal is pending or the episode is closed
        """
        state = self.state
        if state is not LockState.UNLOCKED:
            ref = self._record.closed_ref if state is LockState.CLOSED else self._record.proposal_ref
            raise LockEngagedError(state.value, ref)

    # =========================================================================
    # Persistence
    # =========================================================================

    async def hydrate(self) -> LockState:
        """Load the durable record once per process."""
        if not self._hydrated:
            await self._load()
            self._hydrated = True
            logger.info(f"Execution guard hydrated: state={self.state.value}")
        return self.state

    async def refresh(self) -> LockState:
        """Re-read the durable record (another process may have written it)."""
        await self._load()
        return self.state

    async def _load(self) -> None:
        record = await self._store.load()
        self._record = record if record is not None else ExecutionLockRecord()

    async def _commit(self, **changes) -> None:
        changes["updated_at_ms"] = self._clock()
        new_record = self._record.model_copy(update=changes)
        await self._store.save(new_record)
        self._record = new_record

    # =========================================================================
    # Transitions
    # =========================================================================

    async def engage(
        self,
        proposal_ref: str,
        transaction_hash: Optional[str] = None,
        force: bool = False,
    ) -> LockState:
        """
        Mark a proposal as pending.

        Idempotent for the same reference. `force` lets ledger hydration
        replace a pending reference with the one observed on chain.

        Raises:
            LockEngagedError: If the episode is closed, or a different
                proposal is already pending and force is False
        """
        ref = _norm_ref(proposal_ref)
        if not ref:
            raise ValueError("engage() requires a proposal reference")
        tx_hash = _norm_ref(transaction_hash)

        state = self.state
        if state is LockState.CLOSED:
            raise LockEngagedError(state.value, self._record.closed_ref)

        if state is LockState.ENGAGED:
            if self._record.proposal_ref == ref:
                if tx_hash and self._record.transaction_hash != tx_hash:
                    await self._commit(transaction_hash=tx_hash)
                return self.state
            if not force:
                raise LockEngagedError(state.value, self._record.proposal_ref)

        await self._commit(
            submitted=True,
            proposal_ref=ref,
            transaction_hash=tx_hash,
            submitted_at_ms=self._clock(),
        )
        logger.info(f"Execution lock engaged: proposal={ref}")
        return self.state

    async def release(self, reason: str) -> LockState:
        """Return to UNLOCKED (proposal deleted, submission failed, ...)."""
        if self.state is not LockState.ENGAGED:
            logger.debug(f"Release ignored in state {self.state.value}: {reason}")
            return self.state

        previous = self._record.proposal_ref
        await self._commit(
            submitted=False,
            proposal_ref=None,
            transaction_hash=None,
            submitted_at_ms=None,
        )
        logger.info(f"Execution lock released (proposal={previous}): {reason}")
        return self.state

    async def close(self, ref: Optional[str] = None) -> LockState:
        """
        Record that the governed action executed.

        Single-shot episodes close permanently. Repeatable episodes count the
        execution, forget fired triggers and re-arm.
        """
        closed_ref = _norm_ref(ref) or self._record.proposal_ref

        if self.state is LockState.CLOSED:
            return self.state

        if self._episode_mode is EpisodeMode.SINGLE_SHOT:
            await self._commit(
                submitted=False,
                closed=True,
                closed_ref=closed_ref,
                executions=self._record.executions + 1,
            )
            logger.info(f"Execution lock closed: proposal={closed_ref} executed")
            return self.state

        await self._commit(
            submitted=False,
            proposal_ref=None,
            transaction_hash=None,
            submitted_at_ms=None,
            closed_ref=closed_ref,
            executions=self._record.executions + 1,
            fired_trigger_ids=[],
        )
        logger.info(
            f"Proposal {closed_ref} executed; repeatable episode re-armed "
            f"(executions={self._record.executions})"
        )
        for listener in self._close_listeners:
            listener()
        return self.state

    async def report(self, report: SubmissionReport) -> LockState:
        """Apply a submission report from the external submitter."""
        if report.outcome is SubmissionOutcome.SUBMITTED_OK:
            ref = report.resolved_ref
            if not ref:
                logger.warning(
                    "Submission reported OK without a proposal or transaction hash; ignored"
                )
                return self.state
            return await self.engage(ref, transaction_hash=report.transaction_hash)

        if self.state is not LockState.ENGAGED:
            logger.info(f"Submission report {report.outcome.value} with no pending proposal")
            return self.state

        ref = report.resolved_ref
        tx_hash = _norm_ref(report.transaction_hash)
        if ref and ref != self._record.proposal_ref and tx_hash != self._record.transaction_hash:
            logger.warning(
                f"Submission report {report.outcome.value} for {ref} does not match "
                f"pending proposal {self._record.proposal_ref}; ignored"
            )
            return self.state

        detail = f": {report.error}" if report.error else ""
        return await self.release(f"{report.outcome.value}{detail}")

    async def apply_proposal_events(
        self,
        executed: Iterable[str] = (),
        deleted: Iterable[str] = (),
    ) -> LockState:
        """
        Apply governor notifications about proposals.

        Only events for the pending proposal (by proposal hash or transaction
        hash) change state.
        """
        mine = {self._record.proposal_ref, self._record.transaction_hash} - {None}

        for ref in executed:
            normalized = _norm_ref(ref)
            if normalized in mine:
                return await self.close(normalized)

        for ref in deleted:
            normalized = _norm_ref(ref)
            if normalized in mine:
                return await self.release(f"proposal {normalized} deleted")

        return self.state

    async def record_fired(self, trigger_ids: Iterable[str]) -> None:
        """Persist edge-triggered triggers that have fired."""
        merged = set(self._record.fired_trigger_ids) | set(trigger_ids)
        if merged == set(self._record.fired_trigger_ids):
            return
        await self._commit(fired_trigger_ids=sorted(merged))

    async def reset(self) -> LockState:
        """Delete the durable record. Operator action only."""
        await self._store.delete()
        self._record = ExecutionLockRecord()
        logger.warning("Execution lock record reset by operator")
        return self.state
