"""
End-to-end tests for the interview orchestrator.

Assistant replies are fed in by the test through the fake transport's
tickets; evaluator outcomes are queued on the fake evaluator.
"""

import asyncio
from uuid import uuid4

import pytest

from conftest import FakeTransport, control_reply, deliver, make_result
from interview_conductor.config import Settings
from interview_conductor.errors import (
    ConfigurationMissingError,
    EvaluatorTimeoutError,
    ProtocolDesyncError,
)
from interview_conductor.orchestrator.events import (
    AssistantFinal,
    CapKind,
    CapSignal,
    PasteDetected,
    ReplyFailed,
    UserFinal,
    event_adapter,
)
from interview_conductor.orchestrator.interview_orchestrator import InterviewOrchestrator
from interview_conductor.orchestrator.schemas import (
    CheckpointKind,
    InterviewSession,
    PendingReason,
    StageState,
)

QUESTION = "Tell me about a time you changed your approach mid-project."


async def answer(orchestrator: InterviewOrchestrator, text: str) -> None:
    await orchestrator.submit(UserFinal(text=text))
    await orchestrator.drain()


async def reach_background(orchestrator: InterviewOrchestrator, transport: FakeTransport, session) -> None:
    """Start the interview and deliver the first background question."""
    await orchestrator.start_interview(session)
    await deliver(orchestrator, transport.last_ticket(PendingReason.GREETING), "Hi Ada, welcome to Acme!")
    await answer(orchestrator, "Hi, happy to be here.")
    await deliver(orchestrator, transport.last_ticket(PendingReason.BACKGROUND_QUESTION), QUESTION)


async def reach_coding(orchestrator: InterviewOrchestrator, transport: FakeTransport, session) -> None:
    await reach_background(orchestrator, transport, session)
    await orchestrator.handle(CapSignal(cap=CapKind.BACKGROUND_TIMEBOX))
    await orchestrator.drain()
    await deliver(orchestrator, transport.last_ticket(PendingReason.CODING_CHALLENGE), "Build a searchable user list.")


class TestGreetingAndQuestions:
    """Greeting, first question and stage bookkeeping."""

    @pytest.mark.asyncio
    async def test_start_injects_persona_and_requests_greeting(self, orchestrator, transport, session) -> None:
        state = await orchestrator.start_interview(session)

        assert state.stage == StageState.GREETING
        assert "Acme" in transport.system_messages[0]
        assert "Ada" in transport.system_messages[1]
        assert transport.commands[-1] == ("request_response", PendingReason.GREETING)
        assert orchestrator.replies.pending.reason == PendingReason.GREETING

    @pytest.mark.asyncio
    async def test_first_question_is_asked_after_acknowledgement(self, orchestrator, transport, session) -> None:
        await reach_background(orchestrator, transport, session)

        assert orchestrator.stage == StageState.BACKGROUND_QUESTION_PENDING
        assert orchestrator.state.assessment.questions_asked == 1
        assert QUESTION in transport.system_messages[-1]
        assert transport.visible_texts == ["Hi Ada, welcome to Acme!", "Hi, happy to be here.", QUESTION]

    @pytest.mark.asyncio
    async def test_missing_script_refuses_to_start(self, orchestrator, session) -> None:
        session = InterviewSession(candidate_name="Ada", company_id="acme", role_id="data-engineer")
        with pytest.raises(ConfigurationMissingError):
            await orchestrator.start_interview(session)
        assert not orchestrator.is_active

    @pytest.mark.asyncio
    async def test_second_start_is_refused(self, orchestrator, session) -> None:
        await orchestrator.start_interview(session)
        with pytest.raises(ProtocolDesyncError):
            await orchestrator.start_interview(session)


class TestBackgroundStage:
    """CONTROL evaluation, the stage gate and the override."""

    @pytest.mark.asyncio
    async def test_gate_closes_background_and_discards_follow_up(
        self, orchestrator, transport, evaluator, sink, session
    ) -> None:
        evaluator.outcomes = [make_result(50, 50, 50), make_result(60, 60, 60), make_result(100, 100, 100)]
        await reach_background(orchestrator, transport, session)

        await answer(orchestrator, "We moved from REST polling to websockets.")
        await deliver(orchestrator, transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP), "Why websockets?")
        await answer(orchestrator, "Polling overloaded the API.")
        await deliver(orchestrator, transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP), "What did you measure?")
        assert orchestrator.state.assessment.questions_asked == 3

        await answer(orchestrator, "p95 latency dropped from 900ms to 120ms after the switch.")
        late_followup = transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP)
        closing = transport.last_ticket(PendingReason.BACKGROUND_CLOSING)
        assert late_followup.obsolete
        assert transport.cancel_count == 1
        assert "Thank you so much Ada" in transport.system_messages[-1]

        await deliver(orchestrator, late_followup, "Tell me more about the latency?")
        discarded = orchestrator.state.discarded_replies
        assert [d.marker for d in discarded] == ["background_followup_discarded"]
        assert "Tell me more about the latency?" not in transport.visible_texts

        await deliver(
            orchestrator, closing, "Thank you so much Ada, the next steps will be shared with you shortly."
        )
        assert orchestrator.stage == StageState.CODING_SESSION
        assert orchestrator.state.assessment.transition_reason == "gate"
        assert transport.last_ticket().reason == PendingReason.CODING_CHALLENGE
        assert "searchable user list" in transport.system_messages[-1]

        [checkpoint] = sink.checkpoints
        assert checkpoint.kind == CheckpointKind.BACKGROUND_EXIT
        assert checkpoint.scores["confidence"] == 100
        assert checkpoint.details["transition_reason"] == "gate"
        assert checkpoint.details["questions_asked"] == 3
        assert "Tell me more about the latency?" not in [m.text for m in checkpoint.messages]

        # Only the latest answer is scored; its question travels apart from the context.
        context, last_question, last_answer = evaluator.calls[-1]
        assert last_answer.startswith("p95 latency")
        assert last_question == "What did you measure?"
        assert context[-1].text == "Polling overloaded the API."
        assert all(turn.text != "What did you measure?" for turn in context)

    @pytest.mark.asyncio
    async def test_follow_up_is_held_until_evaluation_settles(self, orchestrator, transport, evaluator, session) -> None:
        evaluator.outcomes = [make_result(40, 40, 40)]
        await reach_background(orchestrator, transport, session)
        evaluator.gate = asyncio.Event()

        await orchestrator.handle(UserFinal(text="I rewrote the importer in a weekend."))
        followup = transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP)
        await orchestrator.handle(AssistantFinal(text="What made you rewrite it?", ticket_id=followup.ticket_id))

        assert orchestrator.held_reply is followup
        assert "What made you rewrite it?" not in transport.visible_texts
        assert orchestrator.stage == StageState.BACKGROUND_ANSWERED

        evaluator.gate.set()
        await orchestrator.drain()

        assert orchestrator.held_reply is None
        assert transport.visible_texts[-1] == "What made you rewrite it?"
        assert orchestrator.stage == StageState.BACKGROUND_FOLLOWUP_PENDING
        assert orchestrator.state.assessment.confidence == pytest.approx(40.0)

    @pytest.mark.asyncio
    async def test_extended_answer_is_evaluated_whole(self, orchestrator, transport, evaluator, session) -> None:
        evaluator.outcomes = [make_result(10, 10, 10), make_result(60, 60, 60)]
        await reach_background(orchestrator, transport, session)
        evaluator.gate = asyncio.Event()

        await orchestrator.handle(UserFinal(text="I moved the team to trunk-based development."))
        first_followup = transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP)
        await orchestrator.handle(UserFinal(text="It cut our merge conflicts in half."))
        second_followup = transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP)

        assert first_followup.obsolete
        assert second_followup is not first_followup
        assert orchestrator.replies.pending is second_followup

        evaluator.gate.set()
        await orchestrator.drain()

        _, last_question, combined = evaluator.calls[-1]
        assert last_question == QUESTION
        assert combined == "I moved the team to trunk-based development.\nIt cut our merge conflicts in half."
        assert orchestrator.state.assessment.evaluations == 1
        assert orchestrator.state.assessment.confidence == pytest.approx(60.0)

        await deliver(orchestrator, second_followup, "How did you measure that?")
        assert transport.visible_texts[-1] == "How did you measure that?"
        assert orchestrator.stage == StageState.BACKGROUND_FOLLOWUP_PENDING

    @pytest.mark.asyncio
    async def test_failed_evaluation_holds_the_gate(self, orchestrator, transport, evaluator, session) -> None:
        evaluator.outcomes = [
            make_result(100, 100, 100),
            make_result(100, 100, 100),
            EvaluatorTimeoutError("CONTROL evaluation exceeded 5.0s"),
        ]
        await reach_background(orchestrator, transport, session)

        for text in ("First answer.", "Second answer.", "Third answer."):
            await answer(orchestrator, text)
            await deliver(orchestrator, transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP), "Go on.")

        assessment = orchestrator.state.assessment
        assert assessment.evaluation_failed
        assert not assessment.transitioned
        assert orchestrator.stage == StageState.BACKGROUND_FOLLOWUP_PENDING
        assert assessment.questions_asked == 4

    @pytest.mark.asyncio
    async def test_zero_streak_forces_coding(self, orchestrator, transport, evaluator, sink, session) -> None:
        evaluator.outcomes = [make_result(40, 30, 20), make_result(0, 0, 0), make_result(0, 0, 0)]
        await reach_background(orchestrator, transport, session)

        await answer(orchestrator, "I refactored the billing service.")
        await deliver(orchestrator, transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP), "Why?")
        await answer(orchestrator, "idk")
        await deliver(orchestrator, transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP), "Can you expand?")
        await answer(orchestrator, "no")

        assert orchestrator.stage == StageState.CODING_SESSION
        assert orchestrator.state.assessment.transition_reason == "override"
        assert transport.last_ticket().reason == PendingReason.CODING_CHALLENGE
        assert sink.checkpoints[0].details["transition_reason"] == "override"

        stale = transport.last_ticket(PendingReason.BACKGROUND_FOLLOWUP)
        assert stale.obsolete
        await deliver(orchestrator, stale, "What else?")
        assert orchestrator.state.discarded_replies[-1].marker == "background_followup_discarded"
        assert orchestrator.stage == StageState.CODING_SESSION

    @pytest.mark.asyncio
    async def test_timebox_signal_forces_coding_once(self, orchestrator, transport, sink, session) -> None:
        await reach_background(orchestrator, transport, session)

        await orchestrator.handle(CapSignal(cap=CapKind.BACKGROUND_TIMEBOX))
        await orchestrator.handle(CapSignal(cap=CapKind.BACKGROUND_TIMEBOX))
        await orchestrator.drain()

        assert orchestrator.stage == StageState.CODING_SESSION
        assert orchestrator.state.assessment.transition_reason == "timebox"
        assert [t.reason for t in transport.tickets].count(PendingReason.CODING_CHALLENGE) == 1
        assert len(sink.checkpoints) == 1

    @pytest.mark.asyncio
    async def test_timebox_timer_fires(
        self, transport, llm, evaluator, scorer, script_source, sink, session
    ) -> None:
        orchestrator = InterviewOrchestrator(
            transport,
            llm_client=llm,
            evaluator=evaluator,
            accountability_scorer=scorer,
            script_source=script_source,
            sink=sink,
            settings=Settings(_env_file=None, background_timebox_seconds=0.01),
        )
        await reach_background(orchestrator, transport, session)

        await asyncio.sleep(0.05)
        await orchestrator.drain()

        assert orchestrator.stage == StageState.CODING_SESSION
        assert orchestrator.state.assessment.transition_reason == "timebox"


class TestFailures:
    """Reply retries, caps and fatal errors."""

    @pytest.mark.asyncio
    async def test_failed_reply_is_retried_once(self, orchestrator, transport, session) -> None:
        await orchestrator.start_interview(session)
        first = transport.last_ticket(PendingReason.GREETING)
        injected = len(transport.system_messages)

        await orchestrator.handle(ReplyFailed(ticket_id=first.ticket_id, error="model offline"))
        retry = transport.last_ticket(PendingReason.GREETING)
        assert retry is not first
        assert len(transport.system_messages) == injected

        await orchestrator.handle(ReplyFailed(ticket_id=retry.ticket_id, error="model offline"))
        assert transport.last_ticket() is retry
        assert not orchestrator.replies.is_active
        assert orchestrator.stage == StageState.GREETING

    @pytest.mark.asyncio
    async def test_unexpected_reply_aborts_the_session(self, orchestrator, transport, session) -> None:
        await orchestrator.start_interview(session)

        with pytest.raises(ProtocolDesyncError):
            await orchestrator.handle(AssistantFinal(text="Hello?", ticket_id=uuid4()))

        assert orchestrator.stage == StageState.CONCLUDED
        assert not orchestrator.is_active
        assert transport.cancel_count == 1
        assert not orchestrator.replies.is_active

    @pytest.mark.asyncio
    async def test_interview_end_cap_concludes(self, orchestrator, transport, session) -> None:
        await reach_background(orchestrator, transport, session)
        await answer(orchestrator, "An answer.")

        await orchestrator.handle(CapSignal(cap=CapKind.INTERVIEW_END))
        assert orchestrator.stage == StageState.CONCLUDED

        await orchestrator.handle(UserFinal(text="Hello?"))
        summary = await orchestrator.end_interview()

        assert summary.session.concluded_at is not None
        assert summary.transcript[-1].text == "An answer."
        assert orchestrator.state.session.stage == StageState.CONCLUDED


class TestCodingStage:
    """Replies once the coding stage is reached."""

    @pytest.mark.asyncio
    async def test_early_message_waits_for_the_challenge(self, orchestrator, transport, session) -> None:
        await reach_background(orchestrator, transport, session)
        await orchestrator.handle(CapSignal(cap=CapKind.BACKGROUND_TIMEBOX))
        challenge = transport.last_ticket(PendingReason.CODING_CHALLENGE)

        await orchestrator.handle(UserFinal(text="Can I use TypeScript?"))

        assert not challenge.obsolete
        assert orchestrator.replies.pending is challenge
        assert PendingReason.CODING_REPLY not in [t.reason for t in transport.tickets]

        await deliver(orchestrator, challenge, "Build a searchable user list.")

        assert transport.visible_texts[-2:] == ["Can I use TypeScript?", "Build a searchable user list."]
        assert transport.last_ticket().reason == PendingReason.CODING_REPLY
        assert orchestrator.state.discarded_replies == []

    @pytest.mark.asyncio
    async def test_failed_challenge_still_answers_the_candidate(self, orchestrator, transport, session) -> None:
        await reach_background(orchestrator, transport, session)
        await orchestrator.handle(CapSignal(cap=CapKind.BACKGROUND_TIMEBOX))
        await orchestrator.handle(UserFinal(text="Can I use TypeScript?"))

        first = transport.last_ticket(PendingReason.CODING_CHALLENGE)
        await orchestrator.handle(ReplyFailed(ticket_id=first.ticket_id, error="model offline"))
        retry = transport.last_ticket(PendingReason.CODING_CHALLENGE)
        await orchestrator.handle(ReplyFailed(ticket_id=retry.ticket_id, error="model offline"))

        assert transport.last_ticket().reason == PendingReason.CODING_REPLY


class TestPasteEvaluation:
    """Paste sub-dialogue routed through the orchestrator."""

    @pytest.mark.asyncio
    async def test_paste_is_scored_and_checkpointed(self, orchestrator, transport, llm, scorer, sink, session) -> None:
        await reach_coding(orchestrator, transport, session)
        llm.replies = [
            "What does the dependency array do?",
            control_reply(90, "Thanks, that is clear."),
        ]

        await orchestrator.submit(PasteDetected(content="useMemo(() => filter(users), [users])"))
        await orchestrator.drain()
        assert transport.published[-1].paste_evaluation_id is not None
        assert transport.visible_texts[-1] == "What does the dependency array do?"

        await answer(orchestrator, "It recomputes only when users changes.")

        assert len(scorer.calls) == 1
        assert scorer.calls[0]["user_answer"] == "It recomputes only when users changes."
        kinds = [c.kind for c in sink.checkpoints]
        assert kinds == [CheckpointKind.BACKGROUND_EXIT, CheckpointKind.PASTE_EVALUATION]
        assert sink.checkpoints[1].scores["accountability"] == 62

        summary = orchestrator.summary()
        [evaluation] = summary.paste_evaluations
        assert evaluation.accountability.understanding == "partial"
        main_texts = [t.text for t in orchestrator.state.main_turns()]
        assert "It recomputes only when users changes." not in main_texts

        await answer(orchestrator, "Should I add pagination too?")
        assert transport.last_ticket().reason == PendingReason.CODING_REPLY


def test_raw_events_parse_into_variants() -> None:
    ticket_id = uuid4()
    event = event_adapter.validate_python(
        {"kind": "assistant_final", "text": "Hello", "ticket_id": str(ticket_id)}
    )
    assert isinstance(event, AssistantFinal)
    assert event.ticket_id == ticket_id

    cap = event_adapter.validate_json('{"kind": "cap_signal", "cap": "interview_end"}')
    assert cap == CapSignal(cap=CapKind.INTERVIEW_END)
