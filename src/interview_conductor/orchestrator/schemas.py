"""
Pydantic schemas for the orchestrator module.

Defines the session record, transcript turns, the pending-reply lock,
CONTROL assessments, paste evaluations and persistence checkpoints.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from interview_conductor.scoring.weighted_mean import (
    PILLARS,
    ScorerConfig,
    TraitScorerState,
    compute_weight,
    init_state,
    update,
)


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class StageState(str, Enum):
    """Stages of the interview dialogue."""

    IDLE = "idle"
    GREETING = "greeting"
    GREETING_ACKNOWLEDGED = "greeting_acknowledged"
    BACKGROUND_QUESTION_PENDING = "background_question_pending"
    BACKGROUND_ANSWERED = "background_answered"
    BACKGROUND_FOLLOWUP_PENDING = "background_followup_pending"
    CODING_SESSION = "coding_session"
    CONCLUDED = "concluded"


# Answered and follow-up-pending share a rank: the background Q&A loops between them.
STAGE_RANK: dict[StageState, int] = {
    StageState.IDLE: 0,
    StageState.GREETING: 1,
    StageState.GREETING_ACKNOWLEDGED: 2,
    StageState.BACKGROUND_QUESTION_PENDING: 3,
    StageState.BACKGROUND_ANSWERED: 4,
    StageState.BACKGROUND_FOLLOWUP_PENDING: 4,
    StageState.CODING_SESSION: 5,
    StageState.CONCLUDED: 6,
}

BACKGROUND_STAGES = frozenset(
    {
        StageState.BACKGROUND_QUESTION_PENDING,
        StageState.BACKGROUND_ANSWERED,
        StageState.BACKGROUND_FOLLOWUP_PENDING,
    }
)


class Speaker(str, Enum):
    """Who produced a transcript turn."""

    USER = "user"
    ASSISTANT = "assistant"


class PendingReason(str, Enum):
    """Why an assistant reply (or evaluation) was requested."""

    GREETING = "greeting"
    BACKGROUND_QUESTION = "background_question"
    BACKGROUND_FOLLOWUP = "background_followup"
    BACKGROUND_CLOSING = "background_closing"
    CODING_CHALLENGE = "coding_challenge"
    CODING_REPLY = "coding_reply"
    CONCLUSION = "conclusion"
    EVALUATION = "evaluation"
    PASTE_QUESTION = "paste_question"
    PASTE_FOLLOWUP = "paste_followup"
    PASTE_CLOSING = "paste_closing"
    ACCOUNTABILITY = "accountability"


class InterviewSession(BaseModel):
    """Identity and lifecycle of one interview."""

    session_id: UUID = Field(default_factory=uuid4, description="Unique session identifier")
    candidate_name: str = Field(default="", description="Candidate's display name")
    company_id: str = Field(..., description="Company the interview is for")
    role_id: str = Field(..., description="Role the interview is for")
    stage: StageState = Field(default=StageState.IDLE, description="Mirror of the current stage")
    started_at: datetime = Field(default_factory=_now_utc, description="Session creation time")
    updated_at: datetime = Field(default_factory=_now_utc, description="Last stage change")
    concluded_at: datetime | None = Field(default=None, description="Conclusion time")


class TurnRecord(BaseModel):
    """A single visible turn in the interview transcript."""

    turn_id: UUID = Field(default_factory=uuid4, description="Unique turn identifier")
    speaker: Speaker = Field(..., description="Who spoke")
    text: str = Field(..., description="What was said")
    timestamp: datetime = Field(default_factory=_now_utc, description="When the turn was recorded")
    stage: StageState = Field(..., description="Stage at the time the turn was created")
    paste_evaluation_id: UUID | None = Field(
        default=None,
        description="Set when the turn belongs to a paste-evaluation sub-dialogue",
    )


class PendingReply(BaseModel):
    """Snapshot of the single in-flight request guarded by a turn arbiter."""

    ticket_id: UUID = Field(..., description="Handle of the outstanding request")
    active: bool = Field(default=True, description="Whether the request is still current")
    reason: PendingReason = Field(..., description="Why the request was made")
    stage_snapshot: StageState = Field(..., description="Stage when the request was made")
    since: datetime = Field(default_factory=_now_utc, description="When the request was made")


class DiscardedReply(BaseModel):
    """A reply that arrived after its request was made obsolete."""

    ticket_id: UUID
    reason: PendingReason
    marker: str = Field(..., description="Log marker, '<reason>_discarded'")
    text: str = ""
    discarded_at: datetime = Field(default_factory=_now_utc)


class PillarScores(BaseModel):
    """Per-pillar scores in [0, 100]; every pillar is required."""

    adaptability: float = Field(..., ge=0, le=100)
    creativity: float = Field(..., ge=0, le=100)
    reasoning: float = Field(..., ge=0, le=100)

    def mean(self) -> float:
        """Arithmetic mean of the three pillars."""
        return (self.adaptability + self.creativity + self.reasoning) / 3

    def is_zero(self) -> bool:
        """Whether no pillar received any credit."""
        return self.adaptability == 0 and self.creativity == 0 and self.reasoning == 0


class PillarRationales(BaseModel):
    """Per-pillar justification text."""

    adaptability: str = ""
    creativity: str = ""
    reasoning: str = ""


class ControlResult(BaseModel):
    """
    Output of one CONTROL evaluation of the latest answer.

    Accepts the evaluator's camelCase field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    pillars: PillarScores
    rationale: str
    pillar_rationales: PillarRationales = Field(
        ...,
        validation_alias=AliasChoices("pillar_rationales", "pillarRationales", "perPillarRationale"),
    )

    @model_validator(mode="after")
    def _non_zero_pillars_are_justified(self) -> "ControlResult":
        for pillar in PILLARS:
            score = getattr(self.pillars, pillar)
            if score > 0 and not getattr(self.pillar_rationales, pillar).strip():
                raise ValueError(f"pillar '{pillar}' scored {score} without a rationale")
        return self

    @property
    def confidence(self) -> float:
        """Mean pillar score of this evaluation."""
        return self.pillars.mean()


class ControlAssessment(BaseModel):
    """
    Running CONTROL state for the background stage.

    `transitioned` is one-way: once true it can never be set back.
    """

    pillars: PillarScores | None = Field(default=None, description="Latest evaluation's pillars")
    rationale: str = Field(default="", description="Latest overall rationale")
    pillar_rationales: PillarRationales = Field(default_factory=PillarRationales)
    confidence: float = Field(default=0.0, ge=0, le=100, description="Latest evaluation's mean pillar score")
    questions_asked: int = Field(default=0, ge=0, description="Background questions delivered")
    evaluations: int = Field(default=0, ge=0, description="Successful evaluations applied")
    nonzero_evaluations: int = Field(default=0, ge=0, description="Evaluations with any credit")
    zero_streak: int = Field(default=0, ge=0, description="Consecutive zero-confidence evaluations")
    evaluation_failed: bool = Field(
        default=False,
        description="Latest evaluation failed; the gate holds until a fresh one succeeds",
    )
    transitioned: bool = Field(default=False, description="Background stage has been left")
    transitioned_at: datetime | None = None
    transition_reason: str | None = None
    traits: TraitScorerState = Field(default_factory=init_state, description="Weighted-mean aggregate")

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "transitioned" and self.transitioned and not value:
            raise ValueError("ControlAssessment.transitioned cannot be reset once set")
        super().__setattr__(name, value)

    @property
    def gate_confidence(self) -> float:
        """Confidence the stage gate may act on."""
        return 0.0 if self.evaluation_failed else self.confidence

    def record(self, result: ControlResult, scorer_config: ScorerConfig | None = None) -> None:
        """
        Fold one evaluation into the running assessment.

        Args:
            result: Validated CONTROL result for the latest answer.
            scorer_config: Weighted-mean scorer configuration.
        """
        self.pillars = result.pillars
        self.rationale = result.rationale
        self.pillar_rationales = result.pillar_rationales
        self.confidence = result.confidence
        self.evaluations += 1
        self.evaluation_failed = False

        if result.pillars.is_zero():
            self.zero_streak += 1
        else:
            self.zero_streak = 0
            self.nonzero_evaluations += 1

        traits = self.traits
        for pillar in PILLARS:
            rating = getattr(result.pillars, pillar) / 100
            weight = compute_weight(1, rating, 1, 1, 1)
            if weight > 0:
                traits, _ = update(traits, pillar, rating, weight, scorer_config)
        self.traits = traits

    def mark_failed(self) -> None:
        """Record that the latest evaluation could not be used."""
        self.evaluation_failed = True

    def mark_transitioned(self, reason: str) -> bool:
        """
        Mark the background stage as left.

        Returns:
            True if this call performed the transition, False if already set.
        """
        if self.transitioned:
            return False
        self.transitioned = True
        self.transitioned_at = _now_utc()
        self.transition_reason = reason
        return True

    def aggregate_scores(self) -> dict[str, float]:
        """Weighted-mean pillar scores on the 0-100 scale."""
        return {pillar: round(self.traits.trait(pillar).score * 100, 2) for pillar in PILLARS}


class PasteControl(BaseModel):
    """Machine-parseable control marker attached to scored paste replies."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["PASTE_EVAL_CONTROL"]
    paste_evaluation_id: str = Field(..., validation_alias=AliasChoices("paste_evaluation_id", "pasteEvaluationId"))
    confidence: float = Field(..., ge=0, le=100)
    turn_count: int | None = Field(default=None, validation_alias=AliasChoices("turn_count", "turnCount"))
    ready_to_evaluate: bool = Field(
        ...,
        validation_alias=AliasChoices("ready_to_evaluate", "readyToEvaluate"),
    )


class AccountabilityResult(BaseModel):
    """Result of scoring a candidate's ownership of pasted code."""

    model_config = ConfigDict(populate_by_name=True)

    understanding: Literal["full", "partial", "none"]
    accountability_score: float = Field(
        ...,
        ge=0,
        le=100,
        validation_alias=AliasChoices("accountability_score", "accountabilityScore"),
    )
    reasoning: str = Field(..., min_length=1)
    caption: str = Field(..., min_length=1)


class PasteEvaluation(BaseModel):
    """
    State of one paste-comprehension sub-dialogue.

    `answer_count` only grows and never exceeds `max_answers`; reaching the
    bound makes the evaluation ready regardless of any scored confidence.
    """

    paste_evaluation_id: UUID = Field(default_factory=uuid4)
    pasted_content: str
    created_at: datetime = Field(default_factory=_now_utc)
    answer_count: int = Field(default=0, ge=0)
    max_answers: int = Field(default=3, ge=1)
    min_confidence: float = Field(default=70.0, ge=0, le=100)
    confidence: float = Field(default=0.0, ge=0, le=100)
    ready_to_evaluate: bool = False
    current_question: str | None = None
    questions: list[str] = Field(default_factory=list)
    answers: list[str] = Field(default_factory=list)
    accountability: AccountabilityResult | None = None
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def _answer_count_within_bound(self) -> "PasteEvaluation":
        if self.answer_count > self.max_answers:
            raise ValueError(f"answer_count {self.answer_count} exceeds max_answers {self.max_answers}")
        return self

    @property
    def at_answer_cap(self) -> bool:
        """Whether the candidate has given the maximum number of answers."""
        return self.answer_count >= self.max_answers

    def refresh_readiness(self) -> bool:
        """Recompute readiness; once ready it stays ready."""
        self.ready_to_evaluate = (
            self.ready_to_evaluate or self.confidence >= self.min_confidence or self.at_answer_cap
        )
        return self.ready_to_evaluate

    def record_question(self, text: str) -> None:
        """Record an assistant question shown to the candidate."""
        self.questions.append(text)
        self.current_question = text

    def record_answer(self, text: str) -> int:
        """
        Record a candidate answer and bump the answer count.

        Returns:
            The new answer count.

        Raises:
            ValueError: If the answer cap was already reached.
        """
        if self.at_answer_cap:
            raise ValueError("paste evaluation already holds the maximum number of answers")
        self.answers.append(text)
        self.answer_count += 1
        self.refresh_readiness()
        return self.answer_count

    def apply_confidence(self, confidence: float) -> bool:
        """Apply a scored confidence and return the resulting readiness."""
        self.confidence = max(0.0, min(100.0, confidence))
        return self.refresh_readiness()


class InterviewScript(BaseModel):
    """Per company/role interview content, fetched once at session start."""

    company_id: str = Field(..., min_length=1)
    role_id: str = Field(..., min_length=1)
    company_name: str | None = None
    background_question: str = Field(..., min_length=1)
    coding_prompt: str = Field(..., min_length=1)

    @property
    def display_company(self) -> str:
        """Company name for prompts."""
        return self.company_name or self.company_id

    @property
    def display_role(self) -> str:
        """Role name for prompts."""
        return self.role_id.replace("-", " ").replace("_", " ")


class CheckpointKind(str, Enum):
    """Points at which results are handed to the persistence sink."""

    BACKGROUND_EXIT = "background_exit"
    PASTE_EVALUATION = "paste_evaluation"


class Checkpoint(BaseModel):
    """Payload emitted to the persistence/telemetry sink."""

    checkpoint_id: UUID = Field(default_factory=uuid4)
    session_id: UUID
    kind: CheckpointKind
    stage: StageState
    messages: list[TurnRecord] = Field(default_factory=list)
    scores: dict[str, float] = Field(default_factory=dict)
    rationales: dict[str, str] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now_utc)


class InterviewSummary(BaseModel):
    """Everything known about a session when it ends."""

    session: InterviewSession
    transcript: list[TurnRecord] = Field(default_factory=list)
    assessment: ControlAssessment
    paste_evaluations: list[PasteEvaluation] = Field(default_factory=list)
    discarded_replies: list[DiscardedReply] = Field(default_factory=list)
