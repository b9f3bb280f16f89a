"""
Core Layer - Triggers, arbitration and the cycle engine.

This module provides:
    - CommitmentEngine: One cooperative cycle per episode (use this!)
    - EngineConfig / EngineStats / CycleResult: Engine configuration and results
    - Trigger / TriggerEvaluation / Comparator: Trigger model
    - sanitize_triggers: Re-validation of untrusted trigger input
    - parse_commitment_triggers: Deterministic commitment text parser
    - TriggerInferenceClient: Language-model trigger extraction (untrusted)
    - TriggerEvaluator: Live Uniswap V3 pool prices -> evaluations
    - select_winner: Deterministic arbitration

Data Flow:
    1. Trigger source yields sanitized triggers
    2. TriggerEvaluator reads pool prices and decides emission
    3. select_winner picks exactly one emitted trigger
    4. Execution layer gates, quotes and validates the winner's action
"""

# Engine
from .engine import (
    ActionProposer,
    CommitmentEngine,
    CycleOutcome,
    CycleResult,
    EngineConfig,
    EngineStats,
    TriggerSource,
    static_triggers,
)

# Arbitration
from .arbitration import rank_candidates, select_winner

# Trigger model and input
from .triggers import (
    HIGH_LIQUIDITY,
    Comparator,
    Trigger,
    TriggerEvaluation,
    normalize_trigger,
    sanitize_triggers,
)
from .trigger_parser import parse_commitment_triggers, parse_token_map
from .trigger_inference import TriggerInferenceCache, TriggerInferenceClient

# Evaluation
from .trigger_evaluator import (
    ChainMetadataCache,
    PoolMeta,
    PoolResolutionError,
    TriggerEvaluator,
    price_from_sqrt_price_x96,
)

__all__ = [
    # Engine
    "ActionProposer",
    "CommitmentEngine",
    "CycleOutcome",
    "CycleResult",
    "EngineConfig",
    "EngineStats",
    "TriggerSource",
    "static_triggers",
    # Arbitration
    "rank_candidates",
    "select_winner",
    # Triggers
    "HIGH_LIQUIDITY",
    "Comparator",
    "Trigger",
    "TriggerEvaluation",
    "normalize_trigger",
    "sanitize_triggers",
    "parse_commitment_triggers",
    "parse_token_map",
    "TriggerInferenceCache",
    "TriggerInferenceClient",
    # Evaluation
    "ChainMetadataCache",
    "PoolMeta",
    "PoolResolutionError",
    "TriggerEvaluator",
    "price_from_sqrt_price_x96",
]
