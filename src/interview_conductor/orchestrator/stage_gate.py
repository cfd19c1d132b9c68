"""
Stage gate decisions for leaving the background stage.

Pure functions: no I/O, no mutation.
"""

from typing import Literal, NamedTuple

MIN_QUESTIONS = 3
THRESHOLD = 95.0
ZERO_STREAK_LIMIT = 2

GateReason = Literal["already_transitioned", "min_questions_not_met", "ok", "threshold_not_met"]


class GateDecision(NamedTuple):
    """Whether the background stage may advance, and why."""

    should_advance: bool
    reason: GateReason


def should_advance(
    confidence: float,
    questions_asked: int,
    transitioned: bool,
    *,
    min_questions: int = MIN_QUESTIONS,
    threshold: float = THRESHOLD,
) -> GateDecision:
    """
    Decide whether the background stage may hand over to coding.

    Checks run in a fixed order: transitioned, question count, confidence.

    Args:
        confidence: Running confidence in [0, 100].
        questions_asked: Background questions delivered so far.
        transitioned: Whether the stage was already left.
        min_questions: Questions required before advancing.
        threshold: Confidence required to advance.

    Returns:
        The gate decision.
    """
    if transitioned:
        return GateDecision(False, "already_transitioned")
    if questions_asked < min_questions:
        return GateDecision(False, "min_questions_not_met")
    if confidence >= threshold:
        return GateDecision(True, "ok")
    return GateDecision(False, "threshold_not_met")


def should_force_coding(
    zero_streak: int,
    nonzero_evaluations: int,
    transitioned: bool,
    *,
    zero_streak_limit: int = ZERO_STREAK_LIMIT,
) -> bool:
    """
    Override policy: consecutive unevaluable answers end the background stage.

    Only counts once at least one evaluation has earned credit.
    """
    if transitioned:
        return False
    return nonzero_evaluations >= 1 and zero_streak >= zero_streak_limit
