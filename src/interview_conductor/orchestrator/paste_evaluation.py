"""
Paste evaluation sub-dialogue.

When the candidate pastes external code during the coding stage, a short
bounded exchange checks whether they understand it. The exchange runs in
its own model context; its turns are tagged with the evaluation id and
never enter the main conversation history.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from interview_conductor.agents.accountability import AccountabilityScorer
from interview_conductor.errors import (
    EvaluatorMalformedError,
    InterviewError,
    PolicyViolationError,
    ProtocolDesyncError,
)
from interview_conductor.io.transport import TransportBridge
from interview_conductor.models.llm_client import LLMClientBase, Message, parse_json_loose
from interview_conductor.orchestrator.events import (
    AccountabilityScored,
    AssistantFinal,
    EventSubmitter,
    ReplyFailed,
)
from interview_conductor.orchestrator.interview_state import InterviewState
from interview_conductor.orchestrator.schemas import (
    Checkpoint,
    CheckpointKind,
    PasteControl,
    PasteEvaluation,
    PendingReason,
    Speaker,
    StageState,
    TurnRecord,
)
from interview_conductor.orchestrator.turn_arbiter import ReplyTicket, TurnArbiter

logger = logging.getLogger(__name__)

_CONTROL_LINE = re.compile(r"^\s*CONTROL:\s*(.*)$")
_CONTROL_LEAK = re.compile(r"CONTROL:|PASTE_EVAL_CONTROL|readyToEvaluate")


def split_control(text: str) -> tuple[PasteControl | None, str, bool]:
    """
    Separate the control marker from the visible reply.

    Args:
        text: Raw model reply; the marker, if any, is on the first line.

    Returns:
        The parsed control (None if missing or invalid), the visible text,
        and whether a marker line was present.
    """
    first, _, rest = text.strip().partition("\n")
    match = _CONTROL_LINE.match(first)
    if match is None:
        return None, text.strip(), False

    visible = rest.strip()
    payload = parse_json_loose(match.group(1))
    if not isinstance(payload, dict):
        return None, visible, True
    try:
        return PasteControl.model_validate(payload), visible, True
    except ValidationError:
        return None, visible, True


class PasteEvaluationFlow:
    """
    Runs paste evaluations for one session.

    At most one evaluation is open at a time. Readiness is decided here
    from the scored confidence and the answer cap; the model's own claim is
    only compared against it. Accountability scoring starts exactly once
    per evaluation.
    """

    INITIAL_PROMPT = """You are a technical interviewer. A candidate just pasted this code:

{pasted_content}

Ask ONE short, relevant question (1-2 sentences) to understand if they comprehend what they pasted. Don't evaluate yet, just ask."""

    FOLLOWUP_PROMPT = """You are a technical interviewer evaluating whether a candidate understands code they pasted from an external source.

Current Context:
- Candidate pasted: {pasted_content}
- Current turn: {turn_count}/{max_answers}

Your Task:
1. Determine if candidate understands the pasted code (confidence 0-100)
2. If confidence < {min_confidence:g} and turn < {max_answers}, ask ONE follow-up question (1-2 sentences)
3. If confidence >= {min_confidence:g} OR turn >= {max_answers}, set readyToEvaluate=true and do not ask a question
4. Vary your phrasing naturally - don't repeat exact same questions

Response Format:
First line: CONTROL: {{CONTROL_JSON_HERE}}
Second line onward: Your text response to the candidate

CONTROL JSON Structure:
{{"type": "PASTE_EVAL_CONTROL", "pasteEvaluationId": "{paste_evaluation_id}", "confidence": 0-100, "turnCount": {turn_count}, "readyToEvaluate": boolean}}

Rules:
- Keep questions short and conversational
- If the candidate avoids the question, rephrase naturally
- Don't teach or give hints"""

    CLOSING_PROMPT = """You are a technical interviewer. The candidate has finished explaining code they pasted:

{pasted_content}

Thank them in ONE short sentence and let them continue with the task. Do not ask any question."""

    CORRECTIVE_INSTRUCTION = (
        "Your previous reply was withheld. Never include control data in visible text, and do not "
        "ask further questions once the evaluation is ready."
    )

    # Regenerations allowed per withheld reply before the evaluation is forced.
    MAX_CORRECTIONS = 2

    def __init__(
        self,
        state: InterviewState,
        llm_client: LLMClientBase,
        transport: TransportBridge,
        scorer: AccountabilityScorer,
        submit: EventSubmitter,
        *,
        min_confidence: float = 70.0,
        max_answers: int = 3,
    ) -> None:
        """
        Initialize the flow.

        Args:
            state: Session state holding the open evaluation.
            llm_client: Model client for the isolated paste context.
            transport: Used to publish visible paste turns.
            scorer: Accountability scorer run on completion.
            submit: Coroutine that enqueues events for the session.
            min_confidence: Confidence that makes an evaluation ready.
            max_answers: Answer cap per evaluation.
        """
        self._state = state
        self._llm_client = llm_client
        self._transport = transport
        self._scorer = scorer
        self._submit = submit
        self._min_confidence = min_confidence
        self._max_answers = max_answers

        self._replies = TurnArbiter("paste")
        self._scoring = TurnArbiter("accountability")
        self._history: list[Message] = []
        self._closing_history: list[Message] = []
        self._corrections = 0
        self._scoring_started: set[str] = set()
        self._last_closed: PasteEvaluation | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def replies(self) -> TurnArbiter:
        """Arbiter for paste sub-dialogue replies."""
        return self._replies

    @property
    def scoring(self) -> TurnArbiter:
        """Arbiter for accountability scoring calls."""
        return self._scoring

    @property
    def is_active(self) -> bool:
        """Whether an evaluation is open."""
        return self._state.active_paste is not None

    @property
    def accepts_answers(self) -> bool:
        """Whether candidate turns currently belong to the paste sub-dialogue."""
        evaluation = self._state.active_paste
        return evaluation is not None and not evaluation.ready_to_evaluate

    @property
    def tasks(self) -> set[asyncio.Task[None]]:
        """Paste model and scoring calls still running."""
        return set(self._tasks)

    @property
    def history(self) -> list[Message]:
        """Isolated model context of the open evaluation."""
        return self._history.copy()

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _generate(self, ticket: ReplyTicket, system_prompt: str, history: list[Message]) -> None:
        try:
            text = await self._llm_client.complete(system_prompt, history)
        except InterviewError as e:
            await self._submit(ReplyFailed(ticket_id=ticket.ticket_id, error=str(e)))
            return
        await self._submit(AssistantFinal(text=text, ticket_id=ticket.ticket_id))

    def _request(self, reason: PendingReason, system_prompt: str, history: list[Message]) -> ReplyTicket:
        if self._replies.is_active:
            self._replies.cancel_and_discard()
        ticket = self._replies.begin_pending(reason, self._state.stage)
        self._spawn(self._generate(ticket, system_prompt, history))
        return ticket

    async def begin(self, pasted_content: str) -> PasteEvaluation | None:
        """
        Open a paste evaluation and ask the first question.

        Returns:
            The new evaluation, or None if the paste was ignored.
        """
        if self._state.stage != StageState.CODING_SESSION:
            logger.info(f"Paste ignored in stage {self._state.stage.value}")
            return None
        if self.is_active:
            logger.info("Paste ignored: another paste evaluation is in progress")
            return None

        evaluation = PasteEvaluation(
            pasted_content=pasted_content,
            max_answers=self._max_answers,
            min_confidence=self._min_confidence,
        )
        self._state.open_paste(evaluation)
        self._history = []
        self._closing_history = []
        self._corrections = 0
        logger.info(f"Paste evaluation {evaluation.paste_evaluation_id} opened ({len(pasted_content)} chars)")

        prompt = self.INITIAL_PROMPT.format(pasted_content=pasted_content)
        self._request(PendingReason.PASTE_QUESTION, prompt, [Message(role="user", content="I just pasted this code.")])
        return evaluation

    async def handle_answer(self, text: str) -> None:
        """
        Record a candidate answer and continue the sub-dialogue.

        Raises:
            ProtocolDesyncError: If no evaluation is accepting answers.
        """
        evaluation = self._state.active_paste
        if evaluation is None or evaluation.ready_to_evaluate:
            raise ProtocolDesyncError("Paste answer arrived with no evaluation accepting answers")

        paste_id = evaluation.paste_evaluation_id
        turn = self._state.add_turn(Speaker.USER, text, paste_evaluation_id=paste_id)
        await self._transport.publish(turn)
        self._history.append(Message(role="user", content=text))

        count = evaluation.record_answer(text)
        logger.debug(f"Paste {paste_id}: answer {count}/{evaluation.max_answers}")

        # Scored even at the cap, so the last answer still updates confidence.
        self._request(PendingReason.PASTE_FOLLOWUP, self._followup_prompt(evaluation), self.history)

    def _followup_prompt(self, evaluation: PasteEvaluation) -> str:
        return self.FOLLOWUP_PROMPT.format(
            pasted_content=evaluation.pasted_content,
            turn_count=evaluation.answer_count,
            max_answers=evaluation.max_answers,
            min_confidence=evaluation.min_confidence,
            paste_evaluation_id=evaluation.paste_evaluation_id,
        )

    async def handle_reply(self, ticket: ReplyTicket, text: str) -> None:
        """
        Deliver a claimed (non-discarded) paste reply.

        Args:
            ticket: The claimed paste ticket.
            text: Raw model output.
        """
        self._replies.complete(ticket)
        evaluation = self._state.active_paste
        if evaluation is None and ticket.reason == PendingReason.PASTE_CLOSING:
            evaluation = self._last_closed
        if evaluation is None:
            logger.info(f"Paste reply {ticket.reason.value} arrived after the evaluation closed; dropped")
            return

        if ticket.reason == PendingReason.PASTE_QUESTION:
            await self._show(evaluation, text.strip())
        elif ticket.reason == PendingReason.PASTE_FOLLOWUP:
            await self._handle_scored_reply(evaluation, text)
        elif ticket.reason == PendingReason.PASTE_CLOSING:
            visible = text.strip()
            if "?" in visible or _CONTROL_LEAK.search(visible):
                self._withhold(
                    evaluation,
                    visible,
                    "closing acknowledgement asked a question or leaked control data",
                    self._closing_history,
                )
                if self._corrections < self.MAX_CORRECTIONS:
                    self._corrections += 1
                    prompt = self._closing_prompt(evaluation)
                    self._request(PendingReason.PASTE_CLOSING, prompt, list(self._closing_history))
                else:
                    logger.warning(f"Paste {evaluation.paste_evaluation_id}: closing left unacknowledged")
                return
            await self._show(evaluation, visible, question=False)

    async def _handle_scored_reply(self, evaluation: PasteEvaluation, text: str) -> None:
        control, visible, had_marker = split_control(text)
        paste_id = str(evaluation.paste_evaluation_id)

        if control is not None and control.paste_evaluation_id != paste_id:
            logger.warning(f"Paste control names {control.paste_evaluation_id}, expected {paste_id}")
            control = None

        if control is None:
            error = EvaluatorMalformedError(
                "Paste reply carried no valid control marker",
                details={"paste_evaluation_id": paste_id, "marker_present": had_marker},
            )
            logger.warning(f"{error}; confidence unchanged at {evaluation.confidence:.0f}")
        else:
            ready = evaluation.apply_confidence(control.confidence)
            if control.ready_to_evaluate != ready:
                logger.info(
                    f"Paste {paste_id}: model claimed readyToEvaluate={control.ready_to_evaluate}, "
                    f"computed {ready} (confidence={evaluation.confidence:.0f}, "
                    f"answers={evaluation.answer_count}/{evaluation.max_answers})"
                )

        shown = False
        if _CONTROL_LEAK.search(visible):
            self._withhold(evaluation, visible, "control data leaked into visible text", self._history)
        elif evaluation.ready_to_evaluate and "?" in visible:
            self._withhold(evaluation, visible, "question asked after the evaluation became ready", self._history)
        elif visible:
            await self._show(evaluation, visible, question=not evaluation.ready_to_evaluate)
            shown = True

        if not evaluation.ready_to_evaluate and not shown:
            if self._corrections < self.MAX_CORRECTIONS:
                self._corrections += 1
                logger.info(f"Paste {paste_id}: requesting corrected reply {self._corrections}/{self.MAX_CORRECTIONS}")
                self._request(PendingReason.PASTE_FOLLOWUP, self._followup_prompt(evaluation), self.history)
                return
            logger.warning(f"Paste {paste_id}: no usable reply after {self._corrections} corrections; forcing")
            evaluation.ready_to_evaluate = True

        if evaluation.ready_to_evaluate:
            await self._finish(evaluation, acknowledged=shown)

    def _withhold(self, evaluation: PasteEvaluation, visible: str, reason: str, context: list[Message]) -> None:
        violation = PolicyViolationError(
            f"Paste reply withheld: {reason}",
            details={"paste_evaluation_id": str(evaluation.paste_evaluation_id), "text": visible[:200]},
        )
        logger.warning(str(violation))
        context.append(Message(role="system", content=self.CORRECTIVE_INSTRUCTION))

    async def _show(self, evaluation: PasteEvaluation, text: str, question: bool = True) -> None:
        if not text:
            return
        self._corrections = 0
        if question:
            evaluation.record_question(text)
        turn = self._state.add_turn(Speaker.ASSISTANT, text, paste_evaluation_id=evaluation.paste_evaluation_id)
        self._history.append(Message(role="assistant", content=text))
        await self._transport.publish(turn)

    async def _finish(self, evaluation: PasteEvaluation, acknowledged: bool) -> None:
        paste_id = str(evaluation.paste_evaluation_id)
        if paste_id in self._scoring_started:
            return
        self._scoring_started.add(paste_id)

        ticket = self._scoring.begin_pending(PendingReason.ACCOUNTABILITY, self._state.stage)
        logger.info(f"Paste {paste_id} ready after {evaluation.answer_count} answer(s); scoring accountability")
        self._spawn(self._score(ticket, evaluation))

        if not acknowledged:
            # Carries any corrective instruction added while withholding.
            self._closing_history = self.history
            prompt = self._closing_prompt(evaluation)
            self._request(PendingReason.PASTE_CLOSING, prompt, list(self._closing_history))

    def _closing_prompt(self, evaluation: PasteEvaluation) -> str:
        return self.CLOSING_PROMPT.format(pasted_content=evaluation.pasted_content)

    async def _score(self, ticket: ReplyTicket, evaluation: PasteEvaluation) -> None:
        try:
            result = await self._scorer.score(
                pasted_content=evaluation.pasted_content,
                ai_question=" ".join(evaluation.questions),
                user_answer=" ".join(evaluation.answers),
                coding_task=self._state.script.coding_prompt,
            )
        except InterviewError as e:
            await self._submit(
                AccountabilityScored(
                    ticket_id=ticket.ticket_id,
                    paste_evaluation_id=evaluation.paste_evaluation_id,
                    error=str(e),
                )
            )
            return
        await self._submit(
            AccountabilityScored(
                ticket_id=ticket.ticket_id,
                paste_evaluation_id=evaluation.paste_evaluation_id,
                result=result,
            )
        )

    async def handle_reply_failed(self, ticket: ReplyTicket, error: str) -> None:
        """
        Release a failed paste reply.

        The candidate can still answer an evaluation that is not ready; one
        already at its cap is scored without the lost reply.
        """
        self._replies.complete(ticket)
        logger.warning(f"Paste reply {ticket.reason.value} failed: {error}")
        evaluation = self._state.active_paste
        if ticket.reason == PendingReason.PASTE_FOLLOWUP and evaluation is not None and evaluation.ready_to_evaluate:
            await self._finish(evaluation, acknowledged=False)

    async def handle_scored(self, event: AccountabilityScored) -> Checkpoint | None:
        """
        Complete the evaluation with its accountability result.

        Returns:
            The paste-evaluation checkpoint, or None if the result was discarded.

        Raises:
            ProtocolDesyncError: If the result names an evaluation that is not open.
        """
        claim = self._scoring.claim(event.ticket_id)
        if claim.discarded:
            return None
        self._scoring.complete(claim.ticket)

        evaluation = self._state.active_paste
        if evaluation is None or evaluation.paste_evaluation_id != event.paste_evaluation_id:
            raise ProtocolDesyncError(
                "Accountability result for a paste evaluation that is not open",
                details={"paste_evaluation_id": str(event.paste_evaluation_id)},
            )

        if event.result is not None:
            evaluation.accountability = event.result
            logger.info(
                f"Paste {evaluation.paste_evaluation_id}: understanding={event.result.understanding}, "
                f"score={event.result.accountability_score:.0f}"
            )
        else:
            logger.warning(f"Accountability scoring failed for paste {evaluation.paste_evaluation_id}: {event.error}")

        evaluation.completed_at = datetime.now(timezone.utc)
        messages = self._state.paste_turns(evaluation.paste_evaluation_id)
        self._last_closed = self._state.close_paste()
        self._history = []
        return self._checkpoint(evaluation, messages, event.error)

    def _checkpoint(self, evaluation: PasteEvaluation, messages: list[TurnRecord], error: str | None) -> Checkpoint:
        scores: dict[str, float] = {"confidence": evaluation.confidence}
        rationales: dict[str, str] = {}
        details: dict[str, Any] = {
            "paste_evaluation_id": str(evaluation.paste_evaluation_id),
            "answer_count": evaluation.answer_count,
            "pasted_content": evaluation.pasted_content,
        }
        result = evaluation.accountability
        if result is not None:
            scores["accountability"] = result.accountability_score
            rationales["reasoning"] = result.reasoning
            rationales["caption"] = result.caption
            details["understanding"] = result.understanding
        if error:
            details["error"] = error
        return Checkpoint(
            session_id=self._state.session_id,
            kind=CheckpointKind.PASTE_EVALUATION,
            stage=self._state.stage,
            messages=messages,
            scores=scores,
            rationales=rationales,
            details=details,
        )

    async def cancel(self) -> None:
        """Abandon in-flight paste work."""
        self._replies.cancel_and_discard()
        self._scoring.cancel_and_discard()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
