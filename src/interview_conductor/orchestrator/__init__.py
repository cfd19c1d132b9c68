"""
Orchestrator module for managing interview flow and coordination.

The orchestrator class itself lives in
``interview_conductor.orchestrator.interview_orchestrator``.
"""

from interview_conductor.orchestrator.events import (
    AccountabilityScored,
    AssistantFinal,
    CapKind,
    CapSignal,
    EvaluatorResult,
    InterviewEvent,
    PasteDetected,
    ReplyFailed,
    UserFinal,
    event_adapter,
)
from interview_conductor.orchestrator.interview_state import InterviewState
from interview_conductor.orchestrator.schemas import (
    Checkpoint,
    ControlAssessment,
    ControlResult,
    InterviewScript,
    InterviewSession,
    InterviewSummary,
    PasteEvaluation,
    PendingReason,
    StageState,
    TurnRecord,
)
from interview_conductor.orchestrator.stage_gate import GateDecision, should_advance, should_force_coding
from interview_conductor.orchestrator.stage_machine import StageStateMachine, StageTransition
from interview_conductor.orchestrator.turn_arbiter import ReplyTicket, TurnArbiter

__all__ = [
    "AccountabilityScored",
    "AssistantFinal",
    "CapKind",
    "CapSignal",
    "Checkpoint",
    "ControlAssessment",
    "ControlResult",
    "EvaluatorResult",
    "GateDecision",
    "InterviewEvent",
    "InterviewScript",
    "InterviewSession",
    "InterviewState",
    "InterviewSummary",
    "PasteDetected",
    "PasteEvaluation",
    "PendingReason",
    "ReplyFailed",
    "ReplyTicket",
    "StageState",
    "StageStateMachine",
    "StageTransition",
    "TurnArbiter",
    "TurnRecord",
    "UserFinal",
    "event_adapter",
    "should_advance",
    "should_force_coding",
]
