"""
Arbitration between triggers that emitted in the same cycle.

Exactly one winner: the emitted evaluation with the lowest priority value,
ties broken by trigger id. The order of the input never matters.
"""
from __future__ import annotations

from typing import Iterable, Optional

from .triggers import TriggerEvaluation


def rank_candidates(evaluations: Iterable[TriggerEvaluation]) -> list[TriggerEvaluation]:
    """Emitted evaluations in deterministic (priority, id) order."""
    return sorted((e for e in evaluations if e.emitted), key=lambda e: e.sort_key)


def select_winner(evaluations: Iterable[TriggerEvaluation]) -> Optional[TriggerEvaluation]:
    """
    Pick the winning trigger for this cycle.

    Returns:
        The emitted evaluation with minimal (priority, trigger_id), or None
    """
    ranked = rank_candidates(evaluations)
    return ranked[0] if ranked else None
