"""
Closed set of events consumed by the interview orchestrator.

Every input to a session (transport turns, evaluator results, paste
detection, external caps) is one of these variants and is handled by a
single transition function, one event at a time.
"""

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from interview_conductor.orchestrator.schemas import AccountabilityResult, ControlResult


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class UserFinal(_Event):
    """A finalized candidate turn from the transport."""

    kind: Literal["user_final"] = "user_final"
    text: str


class AssistantFinal(_Event):
    """A finalized assistant turn. Untagged finals match the oldest outstanding request."""

    kind: Literal["assistant_final"] = "assistant_final"
    text: str
    ticket_id: UUID | None = None


class ReplyFailed(_Event):
    """The transport or model could not produce a requested reply."""

    kind: Literal["reply_failed"] = "reply_failed"
    ticket_id: UUID | None = None
    error: str = ""


class PasteDetected(_Event):
    """The candidate pasted external content into the editor."""

    kind: Literal["paste_detected"] = "paste_detected"
    content: str


class EvaluatorResult(_Event):
    """Outcome of an out-of-band CONTROL evaluation."""

    kind: Literal["evaluator_result"] = "evaluator_result"
    ticket_id: UUID
    result: ControlResult | None = None
    error: str | None = None
    error_code: str | None = None


class CapKind(str, Enum):
    """External limits that force the dialogue forward."""

    BACKGROUND_TIMEBOX = "background_timebox"
    INTERVIEW_END = "interview_end"


class CapSignal(_Event):
    """An external cap has been reached."""

    kind: Literal["cap_signal"] = "cap_signal"
    cap: CapKind


class AccountabilityScored(_Event):
    """Outcome of scoring a completed paste evaluation."""

    kind: Literal["accountability_scored"] = "accountability_scored"
    ticket_id: UUID
    paste_evaluation_id: UUID
    result: AccountabilityResult | None = None
    error: str | None = None


InterviewEvent = Annotated[
    Union[
        UserFinal,
        AssistantFinal,
        ReplyFailed,
        PasteDetected,
        EvaluatorResult,
        CapSignal,
        AccountabilityScored,
    ],
    Field(discriminator="kind"),
]

event_adapter: TypeAdapter[InterviewEvent] = TypeAdapter(InterviewEvent)

EventSubmitter = Callable[[InterviewEvent], Awaitable[None]]
