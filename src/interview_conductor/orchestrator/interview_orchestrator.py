"""
Interview orchestrator.

Coordinates one interview session: consumes events one at a time, drives
the stage state machine, runs CONTROL evaluations out of band, and issues
commands to the transport.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import UUID

from interview_conductor.agents.accountability import (
    AccountabilityScorer,
    HttpAccountabilityScorer,
    LLMAccountabilityScorer,
)
from interview_conductor.agents.control_evaluator import ControlEvaluator, ControlEvaluatorBase
from interview_conductor.agents.prompts import (
    BACKGROUND_CLOSING_INSTRUCTION,
    BACKGROUND_FOLLOWUP_INSTRUCTION,
    BACKGROUND_QUESTION_INSTRUCTION,
    CODING_CHALLENGE_INSTRUCTION,
    CODING_REPLY_INSTRUCTION,
    GREETING_INSTRUCTION,
    build_interviewer_persona,
    first_name,
)
from interview_conductor.config import Settings, get_settings
from interview_conductor.db.sink import CheckpointSink, InMemoryCheckpointSink
from interview_conductor.errors import (
    FatalInterviewError,
    InterviewError,
    ProtocolDesyncError,
)
from interview_conductor.io.transport import CompletionTransport, TransportBridge, TurnListener
from interview_conductor.models.llm_client import LLMClient, LLMClientBase
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
)
from interview_conductor.orchestrator.interview_state import InterviewState
from interview_conductor.orchestrator.paste_evaluation import PasteEvaluationFlow
from interview_conductor.orchestrator.schemas import (
    BACKGROUND_STAGES,
    Checkpoint,
    CheckpointKind,
    DiscardedReply,
    InterviewSession,
    InterviewSummary,
    PendingReason,
    Speaker,
    StageState,
    TurnRecord,
)
from interview_conductor.orchestrator.stage_gate import should_force_coding
from interview_conductor.orchestrator.stage_machine import StageStateMachine, StageTransition
from interview_conductor.orchestrator.turn_arbiter import ReplyTicket, TurnArbiter
from interview_conductor.scripts.script_source import JsonScriptSource, ScriptSource


class InterviewOrchestrator:
    """
    Orchestrates one interview session.

    Every input is an event handled under a single lock, so transitions are
    serialized. Model calls never block a transition: they run as tasks and
    report back through the event queue.
    """

    def __init__(
        self,
        transport: TransportBridge | None = None,
        *,
        llm_client: LLMClientBase | None = None,
        evaluator: ControlEvaluatorBase | None = None,
        accountability_scorer: AccountabilityScorer | None = None,
        script_source: ScriptSource | None = None,
        sink: CheckpointSink | None = None,
        settings: Settings | None = None,
        on_publish: TurnListener | None = None,
    ) -> None:
        """
        Initialize the interview orchestrator.

        Args:
            transport: Conversation channel. Defaults to a CompletionTransport
                over the model client.
            llm_client: Model client shared by default collaborators.
            evaluator: CONTROL evaluator for background answers.
            accountability_scorer: Scorer for paste evaluations.
            script_source: Source of per company/role scripts.
            sink: Receiver of checkpoints.
            settings: Application settings (uses cached settings if None).
            on_publish: Listener for visible turns of the default transport.
        """
        self._logger = logging.getLogger(__name__)
        self._settings = settings or get_settings()

        self._llm_client = llm_client or LLMClient(
            model=self._settings.llm_model_name,
            max_retries=self._settings.llm_max_retries,
            timeout=self._settings.llm_timeout,
        )
        self._evaluator = evaluator or ControlEvaluator(
            self._llm_client,
            timeout=self._settings.evaluator_timeout_seconds,
        )
        if accountability_scorer is None:
            if self._settings.accountability_endpoint:
                accountability_scorer = HttpAccountabilityScorer()
            else:
                accountability_scorer = LLMAccountabilityScorer(self._llm_client)
        self._accountability_scorer = accountability_scorer
        self._script_source = script_source or JsonScriptSource(self._settings.scripts_path)
        self._sink = sink or InMemoryCheckpointSink()
        self._transport = transport or CompletionTransport(self._llm_client, self.submit, on_publish=on_publish)

        self._queue: asyncio.Queue[InterviewEvent] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._timebox_task: asyncio.Task[None] | None = None

        self._state: InterviewState | None = None
        self._machine: StageStateMachine | None = None
        self._paste: PasteEvaluationFlow | None = None
        self._replies = TurnArbiter("reply")
        self._evaluations = TurnArbiter("evaluation")
        self._held: tuple[ReplyTicket, str] | None = None
        self._coding_reply_deferred = False
        self._attempts: dict[UUID, int] = {}

    @property
    def state(self) -> InterviewState | None:
        """Get the current session state, if any."""
        return self._state

    @property
    def stage(self) -> StageState:
        """Get the current stage."""
        return self._state.stage if self._state else StageState.IDLE

    @property
    def is_active(self) -> bool:
        """Check if an interview is currently in progress."""
        return self._state is not None and not self._state.is_concluded

    @property
    def replies(self) -> TurnArbiter:
        """Arbiter for main-conversation replies."""
        return self._replies

    @property
    def evaluations(self) -> TurnArbiter:
        """Arbiter for CONTROL evaluations."""
        return self._evaluations

    @property
    def paste_flow(self) -> PasteEvaluationFlow | None:
        """Paste evaluation flow of the current session."""
        return self._paste

    @property
    def held_reply(self) -> ReplyTicket | None:
        """Follow-up reply held back until the running evaluation settles."""
        return self._held[0] if self._held else None

    @property
    def transport(self) -> TransportBridge:
        """Get the transport."""
        return self._transport

    @property
    def sink(self) -> CheckpointSink:
        """Get the checkpoint sink."""
        return self._sink

    # Session lifecycle

    async def start_interview(self, session: InterviewSession) -> InterviewState:
        """
        Start a new interview session.

        Fetches the script, moves idle -> greeting and requests the greeting.

        Args:
            session: Session identity (candidate, company, role).

        Returns:
            The new session state.

        Raises:
            ConfigurationMissingError: If no script exists for the company/role.
            ProtocolDesyncError: If a session is already running.
        """
        async with self._lock:
            if self.is_active:
                raise ProtocolDesyncError("An interview is already in progress")

            self._logger.info(
                f"Starting interview {session.session_id} for {session.candidate_name or 'candidate'} "
                f"({session.company_id}/{session.role_id})"
            )
            script = await self._script_source.get_script(session.company_id, session.role_id)

            self._state = InterviewState(session, script)
            self._replies = TurnArbiter("reply")
            self._evaluations = TurnArbiter("evaluation")
            self._held = None
            self._coding_reply_deferred = False
            self._attempts = {}
            self._machine = StageStateMachine(
                self._state,
                self._replies,
                min_questions=self._settings.stage_gate_min_questions,
                threshold=self._settings.stage_gate_threshold,
            )
            self._paste = PasteEvaluationFlow(
                self._state,
                self._llm_client,
                self._transport,
                self._accountability_scorer,
                self.submit,
                min_confidence=self._settings.paste_min_confidence,
                max_answers=self._settings.paste_max_answers,
            )

            self._machine.start(session.candidate_name)
            await self._transport.inject_system_message(build_interviewer_persona(script.display_company))
            await self._request_reply(
                PendingReason.GREETING,
                GREETING_INSTRUCTION.format(
                    first_name=first_name(session.candidate_name),
                    role=script.display_role,
                    company=script.display_company,
                ),
            )
            return self._state

    async def end_interview(self) -> InterviewSummary:
        """
        End the interview and summarize it.

        Returns:
            Session, transcript, assessment, paste evaluations and discarded replies.

        Raises:
            ProtocolDesyncError: If no interview was started.
        """
        async with self._lock:
            if self._state is None:
                raise ProtocolDesyncError("No interview to end")
            self._logger.info(f"Ending interview: {self._state.session_id}")
            await self._conclude("end_interview")
            return self.summary()

    def summary(self) -> InterviewSummary:
        """Snapshot of everything known about the session."""
        if self._state is None:
            raise ProtocolDesyncError("No interview has been started")
        paste_evaluations = self._state.paste_history
        if self._state.active_paste is not None:
            paste_evaluations.append(self._state.active_paste)
        return InterviewSummary(
            session=self._state.session,
            transcript=self._state.turns,
            assessment=self._state.assessment,
            paste_evaluations=paste_evaluations,
            discarded_replies=self._state.discarded_replies,
        )

    # Event loop

    async def submit(self, event: InterviewEvent) -> None:
        """Enqueue an event for handling."""
        await self._queue.put(event)

    async def run(self) -> None:
        """Handle queued events until the interview concludes."""
        while self.is_active:
            event = await self._queue.get()
            try:
                await self.handle(event)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Handle queued events and wait for background work until both are exhausted."""
        while True:
            while not self._queue.empty():
                await self.handle(self._queue.get_nowait())
            pending = self._pending_tasks()
            if not pending:
                if self._queue.empty():
                    return
                continue
            await asyncio.wait(pending)

    def _pending_tasks(self) -> set[asyncio.Task[None]]:
        tasks = {t for t in self._tasks if not t.done()}
        if self._paste is not None:
            tasks |= {t for t in self._paste.tasks if not t.done()}
        return tasks

    async def handle(self, event: InterviewEvent) -> None:
        """
        Apply one event to the session.

        Raises:
            FatalInterviewError: After the session has been aborted.
        """
        async with self._lock:
            try:
                await self._dispatch(event)
            except FatalInterviewError as e:
                self._logger.error(f"Fatal error while handling {event.kind}: {e}", exc_info=True)
                await self._abort(e)
                raise

    async def _dispatch(self, event: InterviewEvent) -> None:
        if self._state is None or self._machine is None or self._paste is None:
            raise ProtocolDesyncError(f"{event.kind} arrived before the interview started")

        if isinstance(event, UserFinal):
            await self._on_user_final(event)
        elif isinstance(event, AssistantFinal):
            await self._on_assistant_final(event)
        elif isinstance(event, ReplyFailed):
            await self._on_reply_failed(event)
        elif isinstance(event, EvaluatorResult):
            await self._on_evaluator_result(event)
        elif isinstance(event, PasteDetected):
            await self._paste.begin(event.content)
        elif isinstance(event, AccountabilityScored):
            checkpoint = await self._paste.handle_scored(event)
            if checkpoint is not None:
                self._emit_checkpoint(checkpoint)
        elif isinstance(event, CapSignal):
            await self._on_cap_signal(event)

    # Event handlers

    async def _on_user_final(self, event: UserFinal) -> None:
        stage = self._machine.stage
        if stage == StageState.CONCLUDED:
            self._logger.info("User turn after conclusion ignored")
            return
        if stage == StageState.CODING_SESSION and self._paste.accepts_answers:
            await self._paste.handle_answer(event.text)
            return

        turn = self._state.add_turn(Speaker.USER, event.text)
        await self._transport.publish(turn)
        transition = self._machine.user_final()

        if transition is not None and transition.current == StageState.GREETING_ACKNOWLEDGED:
            await self._request_reply(
                PendingReason.BACKGROUND_QUESTION,
                BACKGROUND_QUESTION_INSTRUCTION.format(question=self._state.script.background_question),
            )
        elif transition is not None and transition.current == StageState.BACKGROUND_ANSWERED:
            self._start_evaluation()
            await self._request_reply(PendingReason.BACKGROUND_FOLLOWUP, BACKGROUND_FOLLOWUP_INSTRUCTION)
        elif stage == StageState.BACKGROUND_ANSWERED and self._awaiting_followup():
            self._logger.debug("Answer extended before the follow-up; re-evaluating the combined answer")
            self._start_evaluation()
            await self._discard_pending_reply()
            await self._issue(PendingReason.BACKGROUND_FOLLOWUP, 0)
        elif stage == StageState.CODING_SESSION and self._pending_reason() == PendingReason.CODING_CHALLENGE:
            self._logger.debug("Coding reply deferred until the challenge is delivered")
            self._coding_reply_deferred = True
        elif stage == StageState.CODING_SESSION:
            await self._request_reply(PendingReason.CODING_REPLY, CODING_REPLY_INSTRUCTION)
        else:
            self._logger.debug(f"User turn recorded in {stage.value}; awaiting the pending reply")

    def _pending_reason(self) -> PendingReason | None:
        pending = self._replies.pending
        return pending.reason if pending is not None else None

    def _awaiting_followup(self) -> bool:
        # A gate closing reply already answers the stage; extra text is only recorded.
        return self._pending_reason() in (None, PendingReason.BACKGROUND_FOLLOWUP)

    async def _on_assistant_final(self, event: AssistantFinal) -> None:
        if event.ticket_id is not None and self._paste.replies.owns(event.ticket_id):
            claim = self._paste.replies.claim(event.ticket_id)
            if claim.discarded:
                self._record_discarded(claim.ticket, event.text)
                return
            await self._paste.handle_reply(claim.ticket, event.text)
            return

        claim = self._replies.claim(event.ticket_id)
        if claim.discarded:
            self._record_discarded(claim.ticket, event.text)
            return

        ticket = claim.ticket
        if ticket.reason == PendingReason.BACKGROUND_FOLLOWUP and self._evaluations.is_active:
            self._logger.debug("Follow-up held until the running evaluation settles")
            self._held = (ticket, event.text)
            return
        await self._deliver(ticket, event.text)

    async def _on_reply_failed(self, event: ReplyFailed) -> None:
        if event.ticket_id is not None and self._paste.replies.owns(event.ticket_id):
            claim = self._paste.replies.claim(event.ticket_id)
            if not claim.discarded:
                await self._paste.handle_reply_failed(claim.ticket, event.error)
            return

        claim = self._replies.claim(event.ticket_id)
        if claim.discarded:
            return
        ticket = claim.ticket
        self._replies.complete(ticket)
        attempt = self._attempts.pop(ticket.ticket_id, 0)

        if attempt < self._settings.reply_max_retries:
            self._logger.warning(
                f"Reply {ticket.reason.value} failed ({event.error}); retry {attempt + 1}/"
                f"{self._settings.reply_max_retries}"
            )
            await self._issue(ticket.reason, attempt + 1)
        else:
            self._logger.error(
                f"Reply {ticket.reason.value} failed after {attempt} retries ({event.error}); "
                f"stage held at {self._machine.stage.value}"
            )
            if ticket.reason == PendingReason.CODING_CHALLENGE:
                await self._release_coding_reply()

    async def _on_evaluator_result(self, event: EvaluatorResult) -> None:
        claim = self._evaluations.claim(event.ticket_id)
        if claim.discarded:
            return
        self._evaluations.complete(claim.ticket)

        if self._machine.stage not in BACKGROUND_STAGES:
            self._logger.info(f"Evaluation result ignored in stage {self._machine.stage.value}")
            return

        assessment = self._state.assessment
        if event.result is None:
            assessment.mark_failed()
            self._logger.warning(
                f"CONTROL evaluation failed ({event.error_code}): {event.error}; stage gate holds"
            )
        else:
            assessment.record(event.result)
            self._logger.info(
                f"CONTROL confidence {assessment.confidence:.1f} "
                f"(questions={assessment.questions_asked}, zero_streak={assessment.zero_streak})"
            )

        if should_force_coding(
            assessment.zero_streak,
            assessment.nonzero_evaluations,
            assessment.transitioned,
            zero_streak_limit=self._settings.zero_streak_limit,
        ):
            self._logger.info(f"{assessment.zero_streak} consecutive unevaluable answers; forcing coding")
            await self._force_coding("override")
            return

        if self._machine.gate_decision().should_advance:
            await self._discard_pending_reply()
            await self._request_reply(
                PendingReason.BACKGROUND_CLOSING,
                BACKGROUND_CLOSING_INSTRUCTION.format(first_name=first_name(self._state.session.candidate_name)),
            )
            return

        if self._held is not None:
            ticket, text = self._held
            self._held = None
            await self._deliver(ticket, text)

    async def _on_cap_signal(self, event: CapSignal) -> None:
        if event.cap == CapKind.INTERVIEW_END:
            await self._conclude("interview_end")
            return
        if self._machine.stage in BACKGROUND_STAGES:
            self._logger.info("Background timebox reached; forcing coding")
            await self._force_coding("timebox")
        else:
            self._logger.debug(f"Timebox signal ignored in stage {self._machine.stage.value}")

    # Replies

    async def _request_reply(self, reason: PendingReason, instruction: str) -> ReplyTicket:
        await self._discard_pending_reply()
        await self._transport.inject_system_message(instruction)
        return await self._issue(reason, 0)

    async def _issue(self, reason: PendingReason, attempt: int) -> ReplyTicket:
        ticket = self._replies.begin_pending(reason, self._machine.stage)
        self._attempts[ticket.ticket_id] = attempt
        await self._transport.request_response(ticket)
        return ticket

    async def _discard_pending_reply(self) -> ReplyTicket | None:
        ticket = self._replies.cancel_and_discard()
        if ticket is None:
            return None
        await self._transport.cancel_in_flight_response()
        self._retire_held(ticket)
        return ticket

    def _retire_held(self, ticket: ReplyTicket | None) -> None:
        if ticket is None or self._held is None or self._held[0] is not ticket:
            return
        _, text = self._held
        self._held = None
        claim = self._replies.claim(ticket.ticket_id)
        self._record_discarded(claim.ticket, text)

    def _record_discarded(self, ticket: ReplyTicket, text: str) -> None:
        self._attempts.pop(ticket.ticket_id, None)
        self._state.add_discarded(
            DiscardedReply(
                ticket_id=ticket.ticket_id,
                reason=ticket.reason,
                marker=ticket.discard_marker,
                text=text,
            )
        )

    async def _deliver(self, ticket: ReplyTicket, text: str) -> None:
        turn, transition = self._machine.ai_final(text)
        self._attempts.pop(ticket.ticket_id, None)
        await self._transport.publish(turn)
        if transition is not None:
            await self._after_transition(transition)
        if ticket.reason == PendingReason.CODING_CHALLENGE:
            await self._release_coding_reply()

    async def _release_coding_reply(self) -> None:
        if not self._coding_reply_deferred:
            return
        self._coding_reply_deferred = False
        await self._request_reply(PendingReason.CODING_REPLY, CODING_REPLY_INSTRUCTION)

    async def _after_transition(self, transition: StageTransition) -> None:
        if transition.current == StageState.BACKGROUND_QUESTION_PENDING:
            self._start_timebox()
        elif transition.current == StageState.CODING_SESSION:
            await self._enter_coding(transition.reason)

    # Stage changes

    async def _force_coding(self, reason: str) -> None:
        transition = self._machine.force_coding(reason)
        if transition is None:
            return
        if transition.cancelled is not None:
            await self._transport.cancel_in_flight_response()
            self._retire_held(transition.cancelled)
        await self._enter_coding(reason)

    async def _enter_coding(self, reason: str) -> None:
        self._cancel_timebox()
        if self._evaluations.is_active:
            self._evaluations.cancel_and_discard()
        self._emit_checkpoint(self._background_checkpoint(reason))
        await self._request_reply(
            PendingReason.CODING_CHALLENGE,
            CODING_CHALLENGE_INSTRUCTION.format(coding_prompt=self._state.script.coding_prompt),
        )

    async def _conclude(self, reason: str) -> None:
        if self._state.is_concluded:
            return
        self._cancel_timebox()
        self._evaluations.cancel_and_discard()
        await self._discard_pending_reply()
        if self._paste is not None:
            await self._paste.cancel()
        self._machine.conclude(reason)

    async def _abort(self, error: InterviewError) -> None:
        if self._state is None or self._machine is None:
            return
        self._cancel_timebox()
        self._evaluations.cancel_and_discard()
        self._replies.cancel_and_discard()
        self._held = None
        self._coding_reply_deferred = False
        await self._transport.cancel_in_flight_response()
        if self._paste is not None:
            await self._paste.cancel()
        for task in list(self._tasks):
            task.cancel()
        self._machine.conclude(f"aborted: {error.code}")

    # Background work

    def _spawn(self, coro: Any) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _start_evaluation(self) -> None:
        if self._evaluations.is_active:
            self._evaluations.cancel_and_discard()
        ticket = self._evaluations.begin_pending(PendingReason.EVALUATION, self._machine.stage)
        context, question, answers = self._state.last_exchange(self._settings.control_context_turns)
        last_question = question.text if question is not None else ""
        answer = "\n".join(turn.text for turn in answers)
        self._spawn(self._evaluate(ticket, context, last_question, answer))

    async def _evaluate(self, ticket: ReplyTicket, context: list[TurnRecord], last_question: str, answer: str) -> None:
        try:
            result = await self._evaluator.evaluate(context, last_question, answer, self._state.script)
        except InterviewError as e:
            await self.submit(EvaluatorResult(ticket_id=ticket.ticket_id, error=e.message, error_code=e.code))
            return
        await self.submit(EvaluatorResult(ticket_id=ticket.ticket_id, result=result))

    def _start_timebox(self) -> None:
        seconds = self._settings.background_timebox_seconds
        if seconds <= 0 or self._timebox_task is not None:
            return
        self._logger.debug(f"Background timebox started ({seconds:.0f}s)")
        self._timebox_task = asyncio.create_task(self._timebox(seconds))

    async def _timebox(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        await self.submit(CapSignal(cap=CapKind.BACKGROUND_TIMEBOX))

    def _cancel_timebox(self) -> None:
        task = self._timebox_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # Checkpoints

    def _background_checkpoint(self, reason: str) -> Checkpoint:
        assessment = self._state.assessment
        scores: dict[str, float] = {"confidence": assessment.confidence}
        if assessment.pillars is not None:
            scores.update(assessment.pillars.model_dump())
        scores.update({f"aggregate_{k}": v for k, v in assessment.aggregate_scores().items()})
        rationales = assessment.pillar_rationales.model_dump()
        rationales["overall"] = assessment.rationale
        return Checkpoint(
            session_id=self._state.session_id,
            kind=CheckpointKind.BACKGROUND_EXIT,
            stage=self._state.stage,
            messages=self._state.main_turns(),
            scores=scores,
            rationales=rationales,
            details={
                "transition_reason": reason,
                "questions_asked": assessment.questions_asked,
                "evaluations": assessment.evaluations,
                "zero_streak": assessment.zero_streak,
                "evaluation_failed": assessment.evaluation_failed,
            },
        )

    def _emit_checkpoint(self, checkpoint: Checkpoint) -> None:
        self._spawn(self._deliver_checkpoint(checkpoint))

    async def _deliver_checkpoint(self, checkpoint: Checkpoint) -> None:
        try:
            await self._sink.emit(checkpoint)
        except Exception as e:
            self._logger.error(f"Checkpoint {checkpoint.kind.value} could not be delivered: {e}", exc_info=True)
