import pytest

from interview_conductor.orchestrator.stage_gate import should_advance, should_force_coding


@pytest.mark.parametrize(
    ("confidence", "questions", "transitioned", "expected"),
    [
        (90.0, 2, False, (False, "min_questions_not_met")),
        (96.0, 3, False, (True, "ok")),
        (96.0, 3, True, (False, "already_transitioned")),
        (94.9, 5, False, (False, "threshold_not_met")),
        (95.0, 3, False, (True, "ok")),
    ],
)
def test_should_advance_checks_in_order(confidence, questions, transitioned, expected) -> None:
    decision = should_advance(confidence, questions, transitioned)
    assert (decision.should_advance, decision.reason) == expected


def test_transitioned_wins_over_missing_questions() -> None:
    decision = should_advance(100.0, 0, True)
    assert decision.reason == "already_transitioned"


def test_custom_gate_parameters() -> None:
    assert should_advance(60.0, 1, False, min_questions=1, threshold=60.0).should_advance
    assert not should_advance(60.0, 1, False, min_questions=2, threshold=60.0).should_advance


def test_force_coding_needs_prior_credit() -> None:
    assert not should_force_coding(zero_streak=3, nonzero_evaluations=0, transitioned=False)
    assert should_force_coding(zero_streak=2, nonzero_evaluations=1, transitioned=False)
    assert not should_force_coding(zero_streak=1, nonzero_evaluations=1, transitioned=False)
    assert not should_force_coding(zero_streak=2, nonzero_evaluations=1, transitioned=True)
