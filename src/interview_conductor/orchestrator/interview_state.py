"""
Interview state management.

Owns the per-session record: identity, the current stage, the visible
transcript, the CONTROL assessment and paste evaluations. Only the stage
state machine changes the stage.
"""

from datetime import datetime, timezone
from uuid import UUID

from interview_conductor.orchestrator.schemas import (
    ControlAssessment,
    DiscardedReply,
    InterviewScript,
    InterviewSession,
    PasteEvaluation,
    Speaker,
    StageState,
    TurnRecord,
)


class InterviewState:
    """
    Mutable state of one interview session.

    Independent sessions are independent instances; nothing here is shared.
    """

    def __init__(self, session: InterviewSession, script: InterviewScript) -> None:
        """
        Initialize interview state.

        Args:
            session: Session identity and lifecycle record.
            script: Interview content for the session's company and role.
        """
        self._session = session
        self._script = script
        self._turns: list[TurnRecord] = []
        self._assessment = ControlAssessment()
        self._active_paste: PasteEvaluation | None = None
        self._paste_history: list[PasteEvaluation] = []
        self._discarded: list[DiscardedReply] = []

    @property
    def session(self) -> InterviewSession:
        """Get the session record."""
        return self._session

    @property
    def session_id(self) -> UUID:
        """Get the session identifier."""
        return self._session.session_id

    @property
    def script(self) -> InterviewScript:
        """Get the interview script."""
        return self._script

    @property
    def stage(self) -> StageState:
        """Get the current stage."""
        return self._session.stage

    @property
    def turns(self) -> list[TurnRecord]:
        """Get all visible transcript turns."""
        return self._turns.copy()

    @property
    def assessment(self) -> ControlAssessment:
        """Get the running CONTROL assessment."""
        return self._assessment

    @property
    def active_paste(self) -> PasteEvaluation | None:
        """Get the open paste evaluation, if any."""
        return self._active_paste

    @property
    def paste_history(self) -> list[PasteEvaluation]:
        """Get completed paste evaluations."""
        return self._paste_history.copy()

    @property
    def discarded_replies(self) -> list[DiscardedReply]:
        """Get replies dropped because their request went obsolete."""
        return self._discarded.copy()

    @property
    def is_concluded(self) -> bool:
        """Check whether the interview has ended."""
        return self._session.stage == StageState.CONCLUDED

    def _set_stage(self, stage: StageState) -> None:
        # Called only by StageStateMachine.
        now = datetime.now(timezone.utc)
        self._session.stage = stage
        self._session.updated_at = now
        if stage == StageState.CONCLUDED and self._session.concluded_at is None:
            self._session.concluded_at = now

    def add_turn(
        self,
        speaker: Speaker,
        text: str,
        paste_evaluation_id: UUID | None = None,
    ) -> TurnRecord:
        """
        Append a visible turn to the transcript.

        Args:
            speaker: Who spoke.
            text: What was said.
            paste_evaluation_id: Tag for paste sub-dialogue turns.

        Returns:
            The created TurnRecord.
        """
        turn = TurnRecord(
            speaker=speaker,
            text=text,
            stage=self._session.stage,
            paste_evaluation_id=paste_evaluation_id,
        )
        self._turns.append(turn)
        return turn

    def add_discarded(self, reply: DiscardedReply) -> None:
        """Keep a record of a dropped reply (never part of the transcript)."""
        self._discarded.append(reply)

    def open_paste(self, evaluation: PasteEvaluation) -> None:
        """Set the active paste evaluation."""
        self._active_paste = evaluation

    def close_paste(self) -> PasteEvaluation | None:
        """Archive and clear the active paste evaluation."""
        evaluation = self._active_paste
        if evaluation is not None:
            self._paste_history.append(evaluation)
        self._active_paste = None
        return evaluation

    def main_turns(self) -> list[TurnRecord]:
        """Visible turns of the main conversation (paste sub-dialogue excluded)."""
        return [t for t in self._turns if t.paste_evaluation_id is None]

    def paste_turns(self, paste_evaluation_id: UUID) -> list[TurnRecord]:
        """Visible turns belonging to one paste evaluation."""
        return [t for t in self._turns if t.paste_evaluation_id == paste_evaluation_id]

    def last_exchange(self, max_context: int) -> tuple[list[TurnRecord], TurnRecord | None, list[TurnRecord]]:
        """
        Split the main conversation around the latest interviewer turn.

        Args:
            max_context: Maximum number of turns kept before that turn.

        Returns:
            Earlier turns, the latest interviewer turn (None if there is
            none), and the candidate turns after it.
        """
        turns = self.main_turns()
        for index in range(len(turns) - 1, -1, -1):
            if turns[index].speaker == Speaker.ASSISTANT:
                earlier = turns[:index][-max_context:] if max_context > 0 else []
                return earlier, turns[index], turns[index + 1 :]
        earlier = turns[-max_context:] if max_context > 0 else []
        return earlier, None, []

    def get_conversation_context(self, max_turns: int | None = None) -> list[TurnRecord]:
        """
        Get recent main-conversation turns.

        Args:
            max_turns: Maximum number of turns to include (None for all).

        Returns:
            Turns in chronological order.
        """
        turns = self.main_turns()
        if max_turns is None:
            return turns
        if max_turns <= 0:
            return []
        return turns[-max_turns:]
