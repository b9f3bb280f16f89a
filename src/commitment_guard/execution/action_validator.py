"""
Action validation and rewriting.

Caller-proposed actions are untrusted. Each field falls in one class:

    checked   must satisfy the policy or the action is rejected
              (tokens, fee tier, amount in, recipient, router under ENFORCE)
    pinned    caller value ignored and overwritten
              (amount out min from the live quote, operation, router under PIN)

The validator is pure: it reads the guard state but never changes it, and it
never talks to the ledger. Balances and quotes are passed in.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

from commitment_guard.chain.addresses import normalize_address
from commitment_guard.errors import InsufficientBalanceError, ValidationError

if TYPE_CHECKING:
    from commitment_guard.core.triggers import TriggerEvaluation

    from .execution_guard import ExecutionGuard
    from .quote_resolver import QuoteResult

logger = logging.getLogger(__name__)

SWAP_ACTION_KIND = "uniswap_v3_exact_input_single"
CALL_OPERATION = 0


class RouterPolicy(str, Enum):
    """How the router field is treated. One choice per deployment."""

    ENFORCE = "enforce"  # caller router must be allowlisted
    PIN = "pin"  # caller router ignored, default router used


class AmountInMode(str, Enum):
    CHECKED = "checked"  # caller amount kept, bounded by balance
    FULL_BALANCE = "full_balance"  # amount pinned to the whole balance


@dataclass
class ValidatorPolicy:
    """Security policy of one deployment."""

    commitment_account: str
    token_allowlist: Sequence[str] = ()
    fee_tier_allowlist: Sequence[int] = (500, 3000, 10000)
    router_allowlist: Sequence[str] = ()
    default_router: Optional[str] = None
    router_policy: RouterPolicy = RouterPolicy.ENFORCE
    amount_in_mode: AmountInMode = AmountInMode.CHECKED

    def __post_init__(self) -> None:
        self.commitment_account = normalize_address(self.commitment_account)
        self.token_allowlist = frozenset(normalize_address(t) for t in self.token_allowlist)
        self.fee_tier_allowlist = frozenset(int(f) for f in self.fee_tier_allowlist)
        self.router_allowlist = frozenset(normalize_address(r) for r in self.router_allowlist)
        if self.default_router:
            self.default_router = normalize_address(self.default_router)
        if self.router_policy is RouterPolicy.PIN and not self.default_router:
            raise ValueError("Router policy 'pin' requires a default router")


@dataclass(frozen=True)
class ProposedSwap:
    """A caller-proposed swap after structural checks. Still untrusted."""

    token_in: str
    token_out: str
    fee: int
    amount_in: Optional[int]
    router: Optional[str] = None
    recipient: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class SwapAction:
    """A validated, rewritten swap action ready for submission."""

    token_in: str
    token_out: str
    router: str
    recipient: str
    fee_tier: int
    amount_in: int
    amount_out_min: int
    operation: int = CALL_OPERATION

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the governor tool shape."""
        return {
            "kind": SWAP_ACTION_KIND,
            "tokenIn": self.token_in,
            "tokenOut": self.token_out,
            "router": self.router,
            "recipient": self.recipient,
            "fee": self.fee_tier,
            "amountInWei": str(self.amount_in),
            "amountOutMinWei": str(self.amount_out_min),
            "operation": self.operation,
        }


def _pick(action: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = action.get(key)
        if value is not None and value != "":
            return value
    return None


def _parse_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if parsed <= 0:
        raise ValidationError(f"{name} must be positive, got {parsed}")
    return parsed


def _address_field(action: Mapping[str, Any], name: str, *keys: str) -> Optional[str]:
    raw = _pick(action, *keys)
    if raw is None:
        return None
    try:
        return normalize_address(str(raw))
    except ValueError as e:
        raise ValidationError(f"{name}: {e}") from e


class ActionValidator:
    """
    Validates and rewrites proposed swap actions.

    Usage:
        validator = ActionValidator(policy, guard=guard)
        proposed = validator.inspect(actions)
        validator.check_winner(proposed, winner)
        amount_in = validator.resolve_amount_in(proposed, balance)
        quote = await resolver.quote(..., amount_in=amount_in)
        action = validator.validate(actions, winner, quote, balance)
    """

    def __init__(
        self,
        policy: ValidatorPolicy,
        guard: Optional["ExecutionGuard"] = None,
    ) -> None:
        self._policy = policy
        self._guard = guard

    @property
    def policy(self) -> ValidatorPolicy:
        return self._policy

    def inspect(self, actions: Sequence[Mapping[str, Any]]) -> ProposedSwap:
        """
        Structural and checked-field validation of the proposed actions.

        Raises:
            ValidationError: On any policy violation
        """
        if isinstance(actions, (Mapping, str, bytes)) or not isinstance(actions, Sequence):
            raise ValidationError("Actions must be a list")
        if len(actions) != 1:
            raise ValidationError(
                f"Exactly one swap action is allowed, got {len(actions)}"
            )

        action = actions[0]
        if not isinstance(action, Mapping):
            raise ValidationError("Action must be an object")

        kind = _pick(action, "kind")
        if kind != SWAP_ACTION_KIND:
            raise ValidationError(f"Only {SWAP_ACTION_KIND} actions are allowed, got {kind!r}")

        token_in = _address_field(action, "tokenIn", "tokenIn", "token_in")
        token_out = _address_field(action, "tokenOut", "tokenOut", "token_out")
        if token_in is None or token_out is None:
            raise ValidationError("Swap action requires tokenIn and tokenOut")
        if token_in == token_out:
            raise ValidationError("tokenIn and tokenOut must differ")

        policy = self._policy
        for name, token in (("tokenIn", token_in), ("tokenOut", token_out)):
            if token not in policy.token_allowlist:
                raise ValidationError(f"{name} {token} is not in the token allowlist")

        raw_fee = _pick(action, "fee", "fee_tier", "feeTier")
        if raw_fee is None:
            raise ValidationError("Swap action requires fee")
        fee = _parse_positive_int(raw_fee, "fee")
        if fee not in policy.fee_tier_allowlist:
            raise ValidationError(f"Fee tier {fee} is not allowed")

        amount_in: Optional[int] = None
        if policy.amount_in_mode is AmountInMode.CHECKED:
            raw_amount = _pick(action, "amountInWei", "amountIn", "amount_in_wei", "amount_in")
            if raw_amount is None:
                raise ValidationError("Swap action requires amountInWei")
            amount_in = _parse_positive_int(raw_amount, "amountInWei")

        recipient = _address_field(action, "recipient", "recipient")
        if recipient is not None and recipient != policy.commitment_account:
            raise ValidationError(
                f"recipient {recipient} must be the commitment account {policy.commitment_account}"
            )

        router = _address_field(action, "router", "router")
        if policy.router_policy is RouterPolicy.ENFORCE:
            effective = router or policy.default_router
            if effective is None:
                raise ValidationError("Swap action requires a router")
            if effective not in policy.router_allowlist:
                raise ValidationError(f"Router {effective} is not in the router allowlist")
            router = effective
        else:
            router = policy.default_router

        return ProposedSwap(
            token_in=token_in,
            token_out=token_out,
            fee=fee,
            amount_in=amount_in,
            router=router,
            recipient=policy.commitment_account,
            raw=dict(action),
        )

    def check_winner(self, proposed: ProposedSwap, winner: "TriggerEvaluation") -> None:
        """
        The action must trade the winning trigger's pair in its pool's fee tier.

        Raises:
            ValidationError: If the action belongs to another branch
        """
        if {proposed.token_in, proposed.token_out} != {winner.base_token, winner.quote_token}:
            raise ValidationError(
                f"Swap tokens {proposed.token_in}/{proposed.token_out} must match the "
                f"winning trigger {winner.trigger_id} pair "
                f"{winner.base_token}/{winner.quote_token}"
            )
        if proposed.fee != winner.pool_fee:
            raise ValidationError(
                f"Swap fee {proposed.fee} must match the winning trigger "
                f"{winner.trigger_id} pool fee {winner.pool_fee}"
            )

    def resolve_amount_in(
        self, proposed: ProposedSwap, available_balance: Optional[int] = None
    ) -> int:
        """
        Decide the exact input amount.

        Raises:
            InsufficientBalanceError: Amount exceeds (or balance is) zero/too low
            ValidationError: full_balance mode without a balance
        """
        if self._policy.amount_in_mode is AmountInMode.FULL_BALANCE:
            if available_balance is None:
                raise ValidationError("full_balance mode requires the available balance")
            if available_balance <= 0:
                raise InsufficientBalanceError(proposed.token_in, 1, available_balance)
            return int(available_balance)

        if proposed.amount_in is None:
            raise ValidationError("Swap action requires amountInWei")
        if available_balance is not None and proposed.amount_in > available_balance:
            raise InsufficientBalanceError(
                proposed.token_in, proposed.amount_in, int(available_balance)
            )
        return proposed.amount_in

    def validate(
        self,
        actions: Sequence[Mapping[str, Any]],
        winner: "TriggerEvaluation",
        quote: "QuoteResult",
        available_balance: Optional[int] = None,
    ) -> SwapAction:
        """
        Full validation: gate, checked fields, winner, amount, quote, pins.

        Returns:
            The rewritten action

        Raises:
            LockEngagedError: The single-fire lock is engaged or closed
            ValidationError: Any policy violation
            InsufficientBalanceError: Balance too low for the amount
        """
        if self._guard is not None:
            self._guard.ensure_unlocked()

        proposed = self.inspect(actions)
        self.check_winner(proposed, winner)
        amount_in = self.resolve_amount_in(proposed, available_balance)

        if (
            quote.token_in != proposed.token_in
            or quote.token_out != proposed.token_out
            or quote.fee != proposed.fee
            or quote.amount_in != amount_in
        ):
            raise ValidationError(
                f"Quote ({quote.token_in}->{quote.token_out}, fee {quote.fee}, "
                f"amount {quote.amount_in}) does not match the action "
                f"({proposed.token_in}->{proposed.token_out}, fee {proposed.fee}, "
                f"amount {amount_in})"
            )

        return SwapAction(
            token_in=proposed.token_in,
            token_out=proposed.token_out,
            router=proposed.router,
            recipient=self._policy.commitment_account,
            fee_tier=proposed.fee,
            amount_in=amount_in,
            amount_out_min=quote.min_amount_out,
            operation=CALL_OPERATION,
        )
