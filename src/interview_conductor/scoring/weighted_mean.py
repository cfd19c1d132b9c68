"""
Weighted-mean trait scorer.

Accumulates per-pillar evidence as a cumulative weighted mean. Each pillar
keeps a running score S in [0, 1], an evidence mass W and a sample count n;
confidence in a pillar is W / (W + c).
"""

import math
from typing import Literal

from pydantic import BaseModel, Field

from interview_conductor.errors import InterviewError

Pillar = Literal["adaptability", "creativity", "reasoning"]
PILLARS: tuple[Pillar, ...] = ("adaptability", "creativity", "reasoning")


class InvalidInputError(InterviewError):
    """Raised on NaN or missing scorer inputs."""

    code = "INVALID_SCORER_INPUT"


class ScorerConfig(BaseModel):
    """Runtime config controlling weights, confidence, and thresholds."""

    w_max: float = Field(default=1.0, gt=0, description="Cap for a single-sample weight")
    c: float = Field(default=2.0, gt=0, description="Confidence shape parameter")
    tau: float = Field(default=0.75, ge=0, le=1, description="Stop-rule confidence threshold")
    initial_score: float = Field(default=0.5, ge=0, le=1, description="Neutral score when W == 0")


class TraitState(BaseModel):
    """Cumulative state for one pillar."""

    score: float = Field(default=0.5, description="Weighted mean in [0, 1]")
    weight: float = Field(default=0.0, ge=0, description="Cumulative evidence mass")
    samples: int = Field(default=0, ge=0, description="Accepted samples")


class TraitScorerState(BaseModel):
    """State for all pillars plus evidence coverage flags."""

    adaptability: TraitState = Field(default_factory=TraitState)
    creativity: TraitState = Field(default_factory=TraitState)
    reasoning: TraitState = Field(default_factory=TraitState)
    coverage: dict[str, bool] = Field(
        default_factory=lambda: {pillar: False for pillar in PILLARS},
        description="Whether each pillar has received non-zero evidence",
    )

    def trait(self, pillar: Pillar) -> TraitState:
        """Get the state of one pillar."""
        return getattr(self, pillar)


class UpdateSnapshot(BaseModel):
    """Debug snapshot emitted by update()."""

    pillar: str
    rating: float
    weight: float
    score_before: float
    weight_before: float
    score_after: float
    weight_after: float
    samples_after: int


def _clip01(x: float | None, label: str = "value") -> float:
    if x is None or (isinstance(x, float) and math.isnan(x)):
        raise InvalidInputError(f"{label} is NaN/None")
    return min(max(x, 0.0), 1.0)


def compute_weight(d: float, q: float, w_ind: float, w_rec: float, w_max: float = 1.0) -> float:
    """
    Compose and cap a single-sample weight.

    w = min(clip(d) * clip(q) * ((clip(w_ind) + clip(w_rec)) / 2), w_max)
    """
    composed = _clip01(d, "d") * _clip01(q, "q") * ((_clip01(w_ind, "w_ind") + _clip01(w_rec, "w_rec")) / 2)
    w = min(max(0.0, composed), w_max)
    if not math.isfinite(w):
        raise InvalidInputError("w must be finite")
    return w


def init_state(config: ScorerConfig | None = None) -> TraitScorerState:
    """Initialize scorer state using the configured neutral score and zero evidence."""
    cfg = config or ScorerConfig()
    return TraitScorerState(
        adaptability=TraitState(score=cfg.initial_score),
        creativity=TraitState(score=cfg.initial_score),
        reasoning=TraitState(score=cfg.initial_score),
    )


def update(
    state: TraitScorerState,
    pillar: Pillar,
    rating: float,
    weight: float | None,
    config: ScorerConfig | None = None,
) -> tuple[TraitScorerState, UpdateSnapshot]:
    """
    Fold one rating into a pillar.

    Args:
        state: Current scorer state (left untouched).
        pillar: Pillar to update.
        rating: Rating in [0, 1] (clipped).
        weight: Sample weight (clipped to [0, w_max]); zero weight is a no-op.
        config: Scorer configuration.

    Returns:
        The next state and a debug snapshot.
    """
    cfg = config or ScorerConfig()
    prev = state.trait(pillar)
    r = _clip01(rating, "rating")
    if weight is None or math.isnan(weight):
        raise InvalidInputError("weight is NaN/None")
    w = min(max(0.0, weight), cfg.w_max)

    if w == 0:
        snapshot = UpdateSnapshot(
            pillar=pillar,
            rating=r,
            weight=w,
            score_before=prev.score,
            weight_before=prev.weight,
            score_after=prev.score,
            weight_after=prev.weight,
            samples_after=prev.samples,
        )
        return state, snapshot

    weight_after = prev.weight + w
    score_after = (prev.weight * prev.score + w * r) / weight_after
    next_trait = TraitState(score=score_after, weight=weight_after, samples=prev.samples + 1)

    coverage = dict(state.coverage)
    coverage[pillar] = coverage.get(pillar, False) or r > 0
    next_state = state.model_copy(update={pillar: next_trait, "coverage": coverage})

    snapshot = UpdateSnapshot(
        pillar=pillar,
        rating=r,
        weight=w,
        score_before=prev.score,
        weight_before=prev.weight,
        score_after=score_after,
        weight_after=weight_after,
        samples_after=next_trait.samples,
    )
    return next_state, snapshot


def merge(a: TraitScorerState, b: TraitScorerState, config: ScorerConfig | None = None) -> TraitScorerState:
    """Merge two states per pillar (commutative and associative)."""
    cfg = config or ScorerConfig()
    merged: dict[str, TraitState] = {}
    for pillar in PILLARS:
        ta, tb = a.trait(pillar), b.trait(pillar)
        weight = ta.weight + tb.weight
        score = (ta.weight * ta.score + tb.weight * tb.score) / weight if weight > 0 else cfg.initial_score
        merged[pillar] = TraitState(score=score, weight=weight, samples=ta.samples + tb.samples)
    coverage = {p: a.coverage.get(p, False) or b.coverage.get(p, False) for p in PILLARS}
    return TraitScorerState(**merged, coverage=coverage)


def confidences(state: TraitScorerState, config: ScorerConfig | None = None) -> dict[str, float]:
    """Confidence per pillar: W / (W + c)."""
    cfg = config or ScorerConfig()
    return {p: state.trait(p).weight / (state.trait(p).weight + cfg.c) for p in PILLARS}


def stop_check(state: TraitScorerState, config: ScorerConfig | None = None) -> bool:
    """Ready iff every pillar is covered, has a sample, and confidence >= tau."""
    cfg = config or ScorerConfig()
    conf = confidences(state, cfg)
    return all(
        state.coverage.get(p, False) and state.trait(p).samples >= 1 and conf[p] >= cfg.tau
        for p in PILLARS
    )
