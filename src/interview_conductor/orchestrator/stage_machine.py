"""
Stage state machine.

The only component that changes the interview stage. Stages only move
forward; the coding override is a forward jump that is safe to repeat.
"""

import logging
from dataclasses import dataclass

from interview_conductor.errors import ProtocolDesyncError
from interview_conductor.orchestrator.interview_state import InterviewState
from interview_conductor.orchestrator.schemas import (
    BACKGROUND_STAGES,
    STAGE_RANK,
    Speaker,
    StageState,
    TurnRecord,
)
from interview_conductor.orchestrator.stage_gate import (
    MIN_QUESTIONS,
    THRESHOLD,
    GateDecision,
    should_advance,
)
from interview_conductor.orchestrator.turn_arbiter import ReplyTicket, TurnArbiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageTransition:
    """A stage change performed by the machine."""

    previous: StageState
    current: StageState
    reason: str
    cancelled: ReplyTicket | None = None


class StageStateMachine:
    """
    Sole mutator of the interview stage.

    Consumes user/assistant finals, consults the stage gate when a
    background answer has been replied to, and exposes the coding override.
    """

    def __init__(
        self,
        state: InterviewState,
        arbiter: TurnArbiter,
        *,
        min_questions: int = MIN_QUESTIONS,
        threshold: float = THRESHOLD,
    ) -> None:
        """
        Initialize the state machine.

        Args:
            state: Session state whose stage this machine owns.
            arbiter: Reply arbiter for the main conversation.
            min_questions: Stage gate minimum question count.
            threshold: Stage gate confidence threshold.
        """
        self._state = state
        self._arbiter = arbiter
        self._min_questions = min_questions
        self._threshold = threshold

    @property
    def stage(self) -> StageState:
        """Get the current stage."""
        return self._state.stage

    def gate_decision(self) -> GateDecision:
        """Consult the stage gate with the current assessment."""
        assessment = self._state.assessment
        return should_advance(
            assessment.gate_confidence,
            assessment.questions_asked,
            assessment.transitioned,
            min_questions=self._min_questions,
            threshold=self._threshold,
        )

    def _move(self, target: StageState, reason: str, cancelled: ReplyTicket | None = None) -> StageTransition:
        previous = self._state.stage
        if STAGE_RANK[target] < STAGE_RANK[previous]:
            raise ProtocolDesyncError(
                f"stage regression refused: {previous.value} -> {target.value}",
                details={"reason": reason},
            )
        self._state._set_stage(target)
        logger.info(f"Stage {previous.value} -> {target.value} ({reason})")
        return StageTransition(previous=previous, current=target, reason=reason, cancelled=cancelled)

    def start(self, candidate_name: str) -> StageTransition:
        """
        Begin the interview.

        Raises:
            ProtocolDesyncError: If the interview was already started.
        """
        if self._state.stage != StageState.IDLE:
            raise ProtocolDesyncError(f"start() called in stage {self._state.stage.value}")
        self._state.session.candidate_name = candidate_name
        return self._move(StageState.GREETING, "start")

    def user_final(self) -> StageTransition | None:
        """
        Advance after a finalized candidate turn.

        Returns:
            The transition, or None if the stage does not react to user turns.
        """
        stage = self._state.stage
        if stage == StageState.GREETING:
            return self._move(StageState.GREETING_ACKNOWLEDGED, "user_final")
        if stage in (StageState.BACKGROUND_QUESTION_PENDING, StageState.BACKGROUND_FOLLOWUP_PENDING):
            return self._move(StageState.BACKGROUND_ANSWERED, "user_final")
        return None

    def ai_final(self, text: str) -> tuple[TurnRecord, StageTransition | None]:
        """
        Record a delivered assistant turn and advance.

        Args:
            text: The assistant's text.

        Returns:
            The recorded turn and the transition, if any.

        Raises:
            ProtocolDesyncError: If no reply was pending.
        """
        if not self._arbiter.is_active:
            raise ProtocolDesyncError(
                "assistant-final arrived with no pending reply",
                details={"stage": self._state.stage.value},
            )

        turn = self._state.add_turn(Speaker.ASSISTANT, text)
        self._arbiter.complete()

        stage = self._state.stage
        assessment = self._state.assessment
        if stage == StageState.GREETING_ACKNOWLEDGED:
            assessment.questions_asked += 1
            return turn, self._move(StageState.BACKGROUND_QUESTION_PENDING, "background_question_asked")

        if stage == StageState.BACKGROUND_ANSWERED:
            decision = self.gate_decision()
            logger.debug(
                f"Stage gate: {decision.reason} (confidence={assessment.gate_confidence:.1f}, "
                f"questions={assessment.questions_asked})"
            )
            if decision.should_advance:
                assessment.mark_transitioned("gate")
                return turn, self._move(StageState.CODING_SESSION, "gate")
            assessment.questions_asked += 1
            return turn, self._move(StageState.BACKGROUND_FOLLOWUP_PENDING, decision.reason)

        return turn, None

    def force_coding(self, reason: str = "override") -> StageTransition | None:
        """
        Jump straight to the coding stage from any background stage.

        A background reply still in flight is cancelled and its result will
        be discarded. Repeated calls are no-ops.

        Returns:
            The transition, or None if coding was already reached.

        Raises:
            ProtocolDesyncError: If called before the background stage.
        """
        stage = self._state.stage
        if stage in (StageState.CODING_SESSION, StageState.CONCLUDED):
            logger.debug(f"force_coding({reason}) ignored in stage {stage.value}")
            return None
        if stage not in BACKGROUND_STAGES:
            raise ProtocolDesyncError(f"force_coding() called in stage {stage.value}")

        cancelled = None
        pending = self._arbiter.pending
        if pending is not None and pending.stage_snapshot in BACKGROUND_STAGES:
            cancelled = self._arbiter.cancel_and_discard()

        self._state.assessment.mark_transitioned(reason)
        return self._move(StageState.CODING_SESSION, reason, cancelled=cancelled)

    def conclude(self, reason: str = "conclude") -> StageTransition | None:
        """Move to the concluded stage. Repeated calls are no-ops."""
        if self._state.stage == StageState.CONCLUDED:
            return None
        return self._move(StageState.CONCLUDED, reason)
