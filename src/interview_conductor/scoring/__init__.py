"""
Scoring module with the weighted-mean trait aggregator.
"""

from interview_conductor.scoring.weighted_mean import (
    PILLARS,
    InvalidInputError,
    ScorerConfig,
    TraitScorerState,
    TraitState,
    compute_weight,
    confidences,
    init_state,
    merge,
    stop_check,
    update,
)

__all__ = [
    "PILLARS",
    "InvalidInputError",
    "ScorerConfig",
    "TraitScorerState",
    "TraitState",
    "compute_weight",
    "confidences",
    "init_state",
    "merge",
    "stop_check",
    "update",
]
