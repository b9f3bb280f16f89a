"""
Commitment Engine - one cooperative cycle per episode.

Each cycle is a linear pipeline:

    1. Reconcile the lock against the ledger (once), check pending receipts
    2. Refresh the durable lock record
    3. Evaluate triggers, persist newly fired ids
    4. Arbitrate: exactly one winner or idle
    5. Gate: the single-fire lock must be unlocked
    6. Proposed actions: caller proposer, or the default full-balance swap
    7. Structural validation + winner cross-check (before spending a quote)
    8. Balance of tokenIn
    9. Live quote
    10. Final validation -> rewritten SwapAction

Every guard error becomes a typed rejection on the CycleResult. Nothing in a
cycle terminates the process.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence

from commitment_guard.chain.client import LedgerError
from commitment_guard.errors import (
    CommitmentGuardError,
    InsufficientBalanceError,
    LockEngagedError,
    QuoteUnavailableError,
    ReconciliationIOError,
    ValidationError,
)
from commitment_guard.execution.action_validator import (
    SWAP_ACTION_KIND,
    ActionValidator,
    SwapAction,
)
from commitment_guard.execution.balance_manager import BalanceManager
from commitment_guard.execution.execution_guard import (
    ExecutionGuard,
    LockState,
    SubmissionReport,
)
from commitment_guard.execution.quote_resolver import QuoteResolver, QuoteResult
from commitment_guard.execution.reconciler import LedgerReconciler

from .arbitration import rank_candidates, select_winner
from .trigger_evaluator import TriggerEvaluator
from .triggers import Trigger, TriggerEvaluation

logger = logging.getLogger(__name__)

TriggerSource = Callable[[], Awaitable[Sequence[Trigger]]]
ActionProposer = Callable[[TriggerEvaluation], Awaitable[Sequence[Mapping[str, Any]]]]


def static_triggers(triggers: Iterable[Trigger]) -> TriggerSource:
    """Wrap a fixed trigger list as a trigger source."""
    fixed = list(triggers)

    async def _source() -> Sequence[Trigger]:
        return fixed

    return _source


@dataclass
class EngineConfig:
    """Configuration for the commitment engine."""

    # Token the default proposal sells; None sells the winner's base token
    spend_token: Optional[str] = None


@dataclass
class EngineStats:
    """Runtime statistics for the engine."""

    cycles: int = 0
    triggers_evaluated: int = 0
    triggers_emitted: int = 0
    actions_emitted: int = 0
    reconcile_errors: int = 0
    rejections: dict[str, int] = field(default_factory=dict)

    def count_rejection(self, error: BaseException) -> None:
        name = type(error).__name__
        self.rejections[name] = self.rejections.get(name, 0) + 1


class CycleOutcome(str, Enum):
    IDLE = "idle"
    ACTION = "action"
    REJECTED = "rejected"


@dataclass
class CycleResult:
    """Everything one cycle produced."""

    outcome: CycleOutcome
    evaluations: list[TriggerEvaluation] = field(default_factory=list)
    winner: Optional[TriggerEvaluation] = None
    action: Optional[SwapAction] = None
    quote: Optional[QuoteResult] = None
    rejection: Optional[Exception] = None

    @property
    def rejection_type(self) -> Optional[str]:
        return type(self.rejection).__name__ if self.rejection is not None else None


class CommitmentEngine:
    """
    Orchestrates evaluation, arbitration, gating, quoting and validation.

    Usage:
        engine = CommitmentEngine(
            config=EngineConfig(),
            trigger_source=static_triggers(triggers),
            evaluator=TriggerEvaluator(ledger),
            guard=guard,
            quote_resolver=QuoteResolver(ledger),
            validator=ActionValidator(policy, guard=guard),
            balances=BalanceManager(ledger, commitment_safe),
            reconciler=LedgerReconciler(ledger, og_module),
        )
        await engine.start()

        result = await engine.run_cycle()
        if result.action:
            report = await submitter.submit(result.action)
            await engine.report_submission(report)
    """

    def __init__(
        self,
        config: EngineConfig,
        trigger_source: TriggerSource,
        evaluator: TriggerEvaluator,
        guard: ExecutionGuard,
        quote_resolver: QuoteResolver,
        validator: ActionValidator,
        balances: BalanceManager,
        reconciler: Optional[LedgerReconciler] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config
        self._trigger_source = trigger_source
        self._evaluator = evaluator
        self._guard = guard
        self._quotes = quote_resolver
        self._validator = validator
        self._balances = balances
        self._reconciler = reconciler
        self._clock = clock or time.time

        self._cycle_lock = asyncio.Lock()
        self._started = False
        self._stats = EngineStats()

    @property
    def stats(self) -> EngineStats:
        return self._stats

    @property
    def guard(self) -> ExecutionGuard:
        return self._guard

    @property
    def evaluator(self) -> TriggerEvaluator:
        return self._evaluator

    async def start(self) -> None:
        """Hydrate the lock and restore fired bookkeeping."""
        if self._started:
            logger.warning("Engine already started")
            return

        state = await self._guard.hydrate()
        fired = self._guard.fired_trigger_ids
        self._evaluator.restore_fired(fired)
        self._guard.add_close_listener(self._evaluator.reset_fired)
        self._started = True

        logger.info(
            f"Commitment engine started: lock={state.value}, "
            f"fired triggers restored={sorted(fired)}"
        )

    async def run_cycle(
        self,
        proposer: Optional[ActionProposer] = None,
        now_ms: Optional[int] = None,
    ) -> CycleResult:
        """
        Run one evaluation cycle.

        Args:
            proposer: Caller collaborator proposing actions for the winner;
                the default full-balance swap is used when omitted
            now_ms: Evaluation timestamp

        Returns:
            CycleResult with an action, a typed rejection, or idle
        """
        if not self._started:
            await self.start()

        async with self._cycle_lock:
            self._stats.cycles += 1
            if now_ms is None:
                now_ms = int(self._clock() * 1000)

            # Balances are read fresh once per cycle
            await self._balances.refresh_balance()

            # 1. Ledger reconciliation
            await self._reconcile()

            # 2. Durable record may have been written by another process
            await self._guard.refresh()

            # 3. Evaluate
            try:
                triggers = await self._trigger_source()
            except CommitmentGuardError as e:
                return self._reject(e, CycleResult(outcome=CycleOutcome.REJECTED))

            evaluations = await self._evaluator.evaluate(triggers, now_ms=now_ms)
            self._stats.triggers_evaluated += len(evaluations)
            await self._persist_fired()

            emitted = rank_candidates(evaluations)
            self._stats.triggers_emitted += len(emitted)

            # 4. Arbitrate
            winner = select_winner(evaluations)
            result = CycleResult(
                outcome=CycleOutcome.IDLE, evaluations=evaluations, winner=winner
            )
            if winner is None:
                logger.debug(f"Cycle idle: {len(evaluations)} trigger(s) evaluated, none emitted")
                return result

            logger.info(
                f"Winning trigger {winner.trigger_id} (priority {winner.priority}, "
                f"price {winner.observed_price:.8f}) out of "
                f"{[e.trigger_id for e in emitted]}"
            )

            try:
                # 5. Gate
                self._guard.ensure_unlocked()

                # 6. Proposed actions
                if proposer is not None:
                    actions = list(await proposer(winner))
                else:
                    actions = [await self.build_default_action(winner)]

                # 7. Structure + winner before spending a quote
                proposed = self._validator.inspect(actions)
                self._validator.check_winner(proposed, winner)

                # 8. Balance
                balance = await self._balances.get_balance(proposed.token_in)
                amount_in = self._validator.resolve_amount_in(proposed, balance)

                # 9. Live quote
                quote = await self._quotes.quote(
                    proposed.token_in, proposed.token_out, proposed.fee, amount_in
                )
                result.quote = quote

                # 10. Final validation
                action = self._validator.validate(actions, winner, quote, balance)

            except (CommitmentGuardError, LedgerError) as e:
                return self._reject(e, result)

            result.outcome = CycleOutcome.ACTION
            result.action = action
            self._stats.actions_emitted += 1
            logger.info(
                f"Action emitted for trigger {winner.trigger_id}: "
                f"{action.amount_in} {action.token_in} -> {action.token_out} "
                f"(fee {action.fee_tier}, minOut {action.amount_out_min}, "
                f"quoter {quote.source_used} {quote.interface})"
            )
            return result

    async def _reconcile(self) -> None:
        if self._reconciler is None:
            return
        try:
            await self._reconciler.reconcile_once(self._guard)
            events = await self._reconciler.poll_proposal_events()
            if events:
                await self._apply_events(events.executed, events.deleted)
            await self._reconciler.check_submission(self._guard)
        except ReconciliationIOError as e:
            self._stats.reconcile_errors += 1
            logger.warning(f"Reconciliation deferred: {e}")

    async def _persist_fired(self) -> None:
        newly_fired = self._evaluator.fired_ids - self._guard.fired_trigger_ids
        if newly_fired:
            await self._guard.record_fired(newly_fired)
            logger.info(f"Triggers fired: {sorted(newly_fired)}")

    def _reject(self, error: Exception, result: CycleResult) -> CycleResult:
        result.outcome = CycleOutcome.REJECTED
        result.rejection = error
        self._stats.count_rejection(error)

        trigger_id = result.winner.trigger_id if result.winner else None
        if isinstance(error, LockEngagedError):
            logger.info(f"Trigger {trigger_id} held back: {error}")
        elif isinstance(error, QuoteUnavailableError):
            logger.warning(
                f"Trigger {trigger_id} rejected: no quote. Tried: {error.failures or [str(error)]}"
            )
        elif isinstance(error, InsufficientBalanceError):
            logger.warning(
                f"Trigger {trigger_id} rejected: balance of {error.token} is "
                f"{error.available}, need {error.required}"
            )
        else:
            logger.warning(f"Trigger {trigger_id} rejected ({type(error).__name__}): {error}")
        return result

    async def build_default_action(self, winner: TriggerEvaluation) -> dict[str, Any]:
        """
        Default proposal: sell the whole balance of the spend token for the
        other side of the winning pair.

        Raises:
            ValidationError: Spend token is not part of the winning pair
            InsufficientBalanceError: Nothing to sell
        """
        spend = self.config.spend_token or winner.base_token
        if spend == winner.base_token:
            token_out = winner.quote_token
        elif spend == winner.quote_token:
            token_out = winner.base_token
        else:
            raise ValidationError(
                f"Spend token {spend} must match the winning trigger "
                f"{winner.trigger_id} pair {winner.base_token}/{winner.quote_token}"
            )

        balance = await self._balances.ensure_sufficient(spend, 1)

        return {
            "kind": SWAP_ACTION_KIND,
            "tokenIn": spend,
            "tokenOut": token_out,
            "router": self._validator.policy.default_router,
            "recipient": self._validator.policy.commitment_account,
            "fee": winner.pool_fee,
            "amountInWei": str(balance),
        }

    async def report_submission(self, report: SubmissionReport) -> LockState:
        """Forward a submission report to the guard and drop cached balances."""
        async with self._cycle_lock:
            state = await self._guard.report(report)
            await self._balances.refresh_balance()
            return state

    async def apply_proposal_events(
        self,
        executed: Iterable[str] = (),
        deleted: Iterable[str] = (),
    ) -> LockState:
        """Forward governor notifications (executed / deleted proposals)."""
        async with self._cycle_lock:
            return await self._apply_events(executed, deleted)

    async def _apply_events(self, executed: Iterable[str], deleted: Iterable[str]) -> LockState:
        executed, deleted = list(executed), list(deleted)
        state = await self._guard.apply_proposal_events(executed=executed, deleted=deleted)
        if executed:
            await self._balances.refresh_balance()
        return state
