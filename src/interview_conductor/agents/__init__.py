"""
Agents module containing the model-backed scorers.

Each agent handles one out-of-band judgement about the candidate.
"""

from interview_conductor.agents.accountability import (
    AccountabilityScorer,
    HttpAccountabilityScorer,
    LLMAccountabilityScorer,
)
from interview_conductor.agents.control_evaluator import (
    ControlEvaluator,
    ControlEvaluatorBase,
    blank_answer_result,
)

__all__ = [
    "AccountabilityScorer",
    "ControlEvaluator",
    "ControlEvaluatorBase",
    "HttpAccountabilityScorer",
    "LLMAccountabilityScorer",
    "blank_answer_result",
]
