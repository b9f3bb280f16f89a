"""
Trigger specifications and evaluations.

Trigger specs come from configuration, from commitment text, or from an
inference collaborator. All three are untrusted: every field is re-validated
here before the evaluator sees it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

from commitment_guard.chain.addresses import ZERO_ADDRESS, normalize_address
from commitment_guard.errors import MalformedTriggerInputError

logger = logging.getLogger(__name__)

HIGH_LIQUIDITY = "high-liquidity"


class Comparator(str, Enum):
    """Price comparison for a trigger."""

    GTE = "gte"
    LTE = "lte"

    @classmethod
    def parse(cls, raw: Any) -> "Comparator":
        value = str(raw if raw is not None else "").strip().lower()
        if value in ("gte", ">="):
            return cls.GTE
        if value in ("lte", "<="):
            return cls.LTE
        raise ValueError(f"Unsupported comparator: {raw!r}")

    def matches(self, price: Decimal, threshold: Decimal) -> bool:
        if self is Comparator.GTE:
            return price >= threshold
        return price <= threshold


@dataclass(frozen=True)
class Trigger:
    """
    A configured price condition that authorizes one branch of action.

    pool is an explicit Uniswap V3 pool address; when None the evaluator
    picks the highest-liquidity pool among the configured fee tiers.
    """

    id: str
    base_token: str
    quote_token: str
    comparator: Comparator
    threshold: Decimal
    priority: int = 0
    pool: Optional[str] = None
    emit_once: bool = True
    label: Optional[str] = None

    @property
    def pool_selection(self) -> str:
        return "explicit" if self.pool else HIGH_LIQUIDITY


@dataclass(frozen=True)
class TriggerEvaluation:
    """Result of evaluating one trigger in one cycle. Never persisted."""

    trigger_id: str
    observed_price: Decimal
    matched: bool
    emitted: bool
    priority: int
    pool: str
    pool_fee: int
    base_token: str
    quote_token: str
    comparator: Comparator
    threshold: Decimal
    evaluated_at_ms: int
    label: Optional[str] = None

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.priority, self.trigger_id)


def _parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("false", "0", "no", "")


def normalize_trigger(
    raw: Union[Trigger, Mapping[str, Any]],
    index: int = 0,
    default_priority: Optional[int] = 0,
) -> Trigger:
    """
    Validate and normalize one trigger specification.

    Accepts either a Trigger or a mapping with camelCase (baseToken) or
    snake_case (base_token) keys.

    Args:
        raw: The untrusted trigger spec
        index: Position in the input list (used for default id / priority)
        default_priority: Priority used when the spec omits one

    Raises:
        MalformedTriggerInputError: If any field is invalid
    """
    if isinstance(raw, Trigger):
        raw = {
            "id": raw.id,
            "base_token": raw.base_token,
            "quote_token": raw.quote_token,
            "comparator": raw.comparator.value,
            "threshold": raw.threshold,
            "priority": raw.priority,
            "pool": raw.pool,
            "emit_once": raw.emit_once,
            "label": raw.label,
        }
    if not isinstance(raw, Mapping):
        raise MalformedTriggerInputError(f"Trigger at index {index} is not an object")

    def get(*keys: str) -> Any:
        for key in keys:
            if key in raw and raw[key] is not None:
                return raw[key]
        return None

    trigger_id = str(get("id") or f"price-trigger-{index + 1}")

    try:
        base_token = normalize_address(get("baseToken", "base_token"))
        quote_token = normalize_address(get("quoteToken", "quote_token"))
        comparator = Comparator.parse(get("comparator"))
    except ValueError as e:
        raise MalformedTriggerInputError(f"Trigger {trigger_id}: {e}", trigger_id) from e

    if base_token == quote_token:
        raise MalformedTriggerInputError(
            f"Trigger {trigger_id} has identical base and quote token", trigger_id
        )

    raw_threshold = get("threshold")
    try:
        threshold = Decimal(str(raw_threshold))
    except (InvalidOperation, ValueError) as e:
        raise MalformedTriggerInputError(
            f"Trigger {trigger_id} has invalid threshold {raw_threshold!r}", trigger_id
        ) from e
    if not threshold.is_finite() or threshold <= 0:
        raise MalformedTriggerInputError(
            f"Trigger {trigger_id} threshold must be positive, got {raw_threshold!r}",
            trigger_id,
        )

    raw_priority = get("priority")
    if raw_priority is None:
        priority = index if default_priority is None else default_priority
    else:
        if isinstance(raw_priority, bool):
            raise MalformedTriggerInputError(
                f"Trigger {trigger_id} has invalid priority", trigger_id
            )
        try:
            priority_value = Decimal(str(raw_priority))
        except (InvalidOperation, ValueError) as e:
            raise MalformedTriggerInputError(
                f"Trigger {trigger_id} has invalid priority {raw_priority!r}", trigger_id
            ) from e
        if not priority_value.is_finite() or priority_value != priority_value.to_integral_value():
            raise MalformedTriggerInputError(
                f"Trigger {trigger_id} priority must be an integer", trigger_id
            )
        priority = int(priority_value)
    if priority < 0:
        raise MalformedTriggerInputError(
            f"Trigger {trigger_id} priority must be non-negative", trigger_id
        )

    pool: Optional[str] = None
    raw_pool = get("pool")
    if raw_pool is not None and str(raw_pool).strip().lower() != HIGH_LIQUIDITY:
        try:
            pool = normalize_address(str(raw_pool))
        except ValueError as e:
            raise MalformedTriggerInputError(f"Trigger {trigger_id}: {e}", trigger_id) from e
        if pool == ZERO_ADDRESS:
            raise MalformedTriggerInputError(
                f"Trigger {trigger_id} has zero-address pool", trigger_id
            )

    label = get("label")
    return Trigger(
        id=trigger_id,
        base_token=base_token,
        quote_token=quote_token,
        comparator=comparator,
        threshold=threshold,
        priority=priority,
        pool=pool,
        emit_once=_parse_bool(get("emitOnce", "emit_once"), default=True),
        label=str(label) if label is not None else None,
    )


def sanitize_triggers(
    raw_triggers: Iterable[Union[Trigger, Mapping[str, Any]]],
    default_priority: Optional[int] = 0,
) -> list[Trigger]:
    """
    Normalize a batch of untrusted trigger specs.

    Malformed entries are skipped with a warning. A batch containing two
    entries with the same id is rejected as a whole, since there is no way to
    tell which one was meant.

    Args:
        raw_triggers: Untrusted specs
        default_priority: Priority for specs without one; None means "use the
            list index" (inference output)

    Returns:
        Valid triggers ordered by (priority, id)

    Raises:
        MalformedTriggerInputError: On duplicate ids
    """
    normalized: list[Trigger] = []
    seen: set[str] = set()

    for index, raw in enumerate(raw_triggers):
        try:
            trigger = normalize_trigger(raw, index, default_priority=default_priority)
        except MalformedTriggerInputError as e:
            logger.warning(f"Price trigger skipped: {e}")
            continue

        if trigger.id in seen:
            raise MalformedTriggerInputError(
                f"Duplicate trigger id: {trigger.id}", trigger.id
            )
        seen.add(trigger.id)
        normalized.append(trigger)

    normalized.sort(key=lambda t: (t.priority, t.id))
    return normalized
