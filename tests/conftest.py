"""
Shared fixtures and fakes for the interview conductor tests.

No test touches the network or the Ollama CLI.
"""

import asyncio
import re
from collections.abc import Callable
from typing import Any

import pytest

from interview_conductor.agents.accountability import AccountabilityScorer
from interview_conductor.agents.control_evaluator import ControlEvaluatorBase
from interview_conductor.config import Settings
from interview_conductor.db.sink import InMemoryCheckpointSink
from interview_conductor.io.transport import TransportBridge
from interview_conductor.models.llm_client import LLMClientBase, LLMResponse, Message
from interview_conductor.orchestrator.events import AssistantFinal, InterviewEvent
from interview_conductor.orchestrator.interview_orchestrator import InterviewOrchestrator
from interview_conductor.orchestrator.interview_state import InterviewState
from interview_conductor.orchestrator.schemas import (
    AccountabilityResult,
    ControlResult,
    InterviewScript,
    InterviewSession,
    PendingReason,
    TurnRecord,
)
from interview_conductor.orchestrator.stage_machine import StageStateMachine
from interview_conductor.orchestrator.turn_arbiter import ReplyTicket, TurnArbiter
from interview_conductor.scripts.script_source import StaticScriptSource

Reply = str | Callable[[list[Message]], str]


def make_result(adaptability: float, creativity: float, reasoning: float) -> ControlResult:
    """Build a valid CONTROL result with a rationale for every pillar."""
    return ControlResult(
        pillars={"adaptability": adaptability, "creativity": creativity, "reasoning": reasoning},
        rationale="Scored from the last answer.",
        pillar_rationales={
            "adaptability": "Mentions switching approach." if adaptability else "",
            "creativity": "Describes a new idea." if creativity else "",
            "reasoning": "Explains the trade-off." if reasoning else "",
        },
    )


def control_reply(confidence: float, visible: str, ready: bool = False) -> Callable[[list[Message]], str]:
    """Paste follow-up reply whose control marker names the evaluation from the prompt."""

    def build(messages: list[Message]) -> str:
        match = re.search(r'"pasteEvaluationId": "([^"]+)"', messages[0].content)
        paste_id = match.group(1) if match else "unknown"
        return (
            f'CONTROL: {{"type": "PASTE_EVAL_CONTROL", "pasteEvaluationId": "{paste_id}", '
            f'"confidence": {confidence}, "readyToEvaluate": {str(ready).lower()}}}\n{visible}'
        )

    return build


class FakeLLMClient(LLMClientBase):
    """Model client that replays scripted replies and records every call."""

    def __init__(self, replies: list[Reply] | None = None, default: str = "Okay.") -> None:
        self.replies: list[Reply] = list(replies or [])
        self.default = default
        self.calls: list[list[Message]] = []

    async def chat(self, messages: list[Message], temperature: float = 0.7, **kwargs: Any) -> LLMResponse:
        self.calls.append(messages)
        reply = self.replies.pop(0) if self.replies else self.default
        content = reply(messages) if callable(reply) else reply
        return LLMResponse(content=content, model="fake")


class FakeTransport(TransportBridge):
    """Transport that records commands; replies are injected by the test."""

    def __init__(self) -> None:
        self.commands: list[tuple[str, Any]] = []
        self.system_messages: list[str] = []
        self.tickets: list[ReplyTicket] = []
        self.published: list[TurnRecord] = []
        self.cancel_count = 0

    async def inject_system_message(self, text: str) -> None:
        self.commands.append(("inject_system_message", text))
        self.system_messages.append(text)

    async def request_response(self, ticket: ReplyTicket) -> None:
        self.commands.append(("request_response", ticket.reason))
        self.tickets.append(ticket)

    async def cancel_in_flight_response(self) -> None:
        self.commands.append(("cancel_in_flight_response", None))
        self.cancel_count += 1

    async def publish(self, turn: TurnRecord) -> None:
        self.published.append(turn)

    def last_ticket(self, reason: PendingReason | None = None) -> ReplyTicket:
        for ticket in reversed(self.tickets):
            if reason is None or ticket.reason == reason:
                return ticket
        raise AssertionError(f"no ticket requested for {reason}")

    @property
    def visible_texts(self) -> list[str]:
        return [turn.text for turn in self.published]


class FakeEvaluator(ControlEvaluatorBase):
    """Evaluator that returns (or raises) queued outcomes, optionally waiting on a gate."""

    def __init__(self, outcomes: list[ControlResult | Exception] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[list[TurnRecord], str, str]] = []
        self.gate: asyncio.Event | None = None

    async def evaluate(
        self, context: list[TurnRecord], last_question: str, answer: str, script: InterviewScript
    ) -> ControlResult:
        self.calls.append((context, last_question, answer))
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else make_result(0, 0, 0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeAccountabilityScorer(AccountabilityScorer):
    """Scorer that records calls and returns a fixed result."""

    def __init__(self, result: AccountabilityResult | None = None) -> None:
        self.result = result or AccountabilityResult(
            understanding="partial",
            accountability_score=62,
            reasoning="Explained the hook but not the dependency array.",
            caption="Pasted React hook with partial understanding",
        )
        self.calls: list[dict[str, str]] = []

    async def score(self, pasted_content: str, ai_question: str, user_answer: str, coding_task: str) -> AccountabilityResult:
        self.calls.append(
            {
                "pasted_content": pasted_content,
                "ai_question": ai_question,
                "user_answer": user_answer,
                "coding_task": coding_task,
            }
        )
        return self.result


class EventCollector:
    """Stand-in for the session queue."""

    def __init__(self) -> None:
        self.events: list[InterviewEvent] = []

    async def __call__(self, event: InterviewEvent) -> None:
        self.events.append(event)


@pytest.fixture
def settings() -> Settings:
    """Settings with the timebox disabled and no .env lookup."""
    return Settings(_env_file=None, background_timebox_seconds=0, reply_max_retries=1)


@pytest.fixture
def script() -> InterviewScript:
    """A complete interview script."""
    return InterviewScript(
        company_id="acme",
        role_id="frontend-engineer",
        company_name="Acme",
        background_question="Tell me about a time you changed your approach mid-project.",
        coding_prompt="Build a searchable user list component.",
    )


@pytest.fixture
def script_source(script: InterviewScript) -> StaticScriptSource:
    source = StaticScriptSource()
    source.add(script)
    return source


@pytest.fixture
def session() -> InterviewSession:
    return InterviewSession(candidate_name="Ada Lovelace", company_id="acme", role_id="frontend-engineer")


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def evaluator() -> FakeEvaluator:
    return FakeEvaluator()


@pytest.fixture
def llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def scorer() -> FakeAccountabilityScorer:
    return FakeAccountabilityScorer()


@pytest.fixture
def sink() -> InMemoryCheckpointSink:
    return InMemoryCheckpointSink()


@pytest.fixture
def orchestrator(
    transport: FakeTransport,
    llm: FakeLLMClient,
    evaluator: FakeEvaluator,
    scorer: FakeAccountabilityScorer,
    script_source: StaticScriptSource,
    sink: InMemoryCheckpointSink,
    settings: Settings,
) -> InterviewOrchestrator:
    return InterviewOrchestrator(
        transport,
        llm_client=llm,
        evaluator=evaluator,
        accountability_scorer=scorer,
        script_source=script_source,
        sink=sink,
        settings=settings,
    )


@pytest.fixture
def state(session: InterviewSession, script: InterviewScript) -> InterviewState:
    return InterviewState(session, script)


@pytest.fixture
def arbiter() -> TurnArbiter:
    return TurnArbiter("reply")


@pytest.fixture
def machine(state: InterviewState, arbiter: TurnArbiter) -> StageStateMachine:
    return StageStateMachine(state, arbiter, min_questions=3, threshold=95.0)


async def deliver(orchestrator: InterviewOrchestrator, ticket: ReplyTicket, text: str) -> None:
    """Feed an assistant reply for a ticket and settle the session."""
    await orchestrator.submit(AssistantFinal(text=text, ticket_id=ticket.ticket_id))
    await orchestrator.drain()
