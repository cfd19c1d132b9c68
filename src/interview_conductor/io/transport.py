"""
Transport bridge between the orchestrator and the conversation channel.

The orchestrator only issues commands (inject a system message, request a
response, cancel the in-flight response, publish a visible turn); results
come back as events on the session queue.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from interview_conductor.errors import RecoverableInterviewError
from interview_conductor.models.llm_client import LLMClientBase, Message
from interview_conductor.orchestrator.events import AssistantFinal, EventSubmitter, ReplyFailed
from interview_conductor.orchestrator.schemas import Speaker, TurnRecord
from interview_conductor.orchestrator.turn_arbiter import ReplyTicket

logger = logging.getLogger(__name__)

TurnListener = Callable[[TurnRecord], Awaitable[None]]


class TransportBridge(ABC):
    """Abstract base class for conversation transports."""

    @abstractmethod
    async def inject_system_message(self, text: str) -> None:
        """
        Add a system instruction the next response must follow.

        Args:
            text: Instruction text (never shown to the candidate).
        """
        ...

    @abstractmethod
    async def request_response(self, ticket: ReplyTicket) -> None:
        """
        Ask the channel for the next assistant turn.

        The result arrives later as an assistant-final (or reply-failed)
        event tagged with the ticket id.

        Args:
            ticket: Arbiter ticket for this request.
        """
        ...

    @abstractmethod
    async def cancel_in_flight_response(self) -> None:
        """Stop any response the channel is still producing."""
        ...

    @abstractmethod
    async def publish(self, turn: TurnRecord) -> None:
        """
        Show a visible turn to the candidate.

        Args:
            turn: Transcript turn to display.
        """
        ...


class CompletionTransport(TransportBridge):
    """
    Transport that fulfils response requests with the model client.

    Keeps its own copy of the system instructions and the visible
    conversation; only published main-conversation turns enter the history.
    """

    def __init__(
        self,
        llm_client: LLMClientBase,
        submit: EventSubmitter,
        on_publish: TurnListener | None = None,
        temperature: float = 0.7,
    ) -> None:
        """
        Initialize the transport.

        Args:
            llm_client: Model client producing assistant turns.
            submit: Coroutine that enqueues events for the session.
            on_publish: Called with every visible turn (e.g. to print it).
            temperature: Sampling temperature for replies.
        """
        self._llm_client = llm_client
        self._submit = submit
        self._on_publish = on_publish
        self._temperature = temperature
        self._system: list[str] = []
        self._history: list[Message] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def system_prompt(self) -> str:
        """All system instructions injected so far."""
        return "\n\n".join(self._system)

    @property
    def history(self) -> list[Message]:
        """Visible conversation as model messages."""
        return self._history.copy()

    async def inject_system_message(self, text: str) -> None:
        self._system.append(text)

    async def request_response(self, ticket: ReplyTicket) -> None:
        system_prompt = self.system_prompt
        history = self.history
        task = asyncio.create_task(self._fulfil(ticket, system_prompt, history))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fulfil(self, ticket: ReplyTicket, system_prompt: str, history: list[Message]) -> None:
        try:
            text = await self._llm_client.complete(system_prompt, history, temperature=self._temperature)
        except RecoverableInterviewError as e:
            logger.warning(f"Reply {ticket.reason.value} failed: {e}")
            await self._submit(ReplyFailed(ticket_id=ticket.ticket_id, error=str(e)))
            return
        await self._submit(AssistantFinal(text=text, ticket_id=ticket.ticket_id))

    async def cancel_in_flight_response(self) -> None:
        # Completions cannot be interrupted; late results are dropped by the arbiter.
        if self._tasks:
            logger.debug(f"{len(self._tasks)} response(s) still in flight; results will be discarded")

    async def publish(self, turn: TurnRecord) -> None:
        if turn.paste_evaluation_id is None:
            role = "user" if turn.speaker == Speaker.USER else "assistant"
            self._history.append(Message(role=role, content=turn.text))
        if self._on_publish is not None:
            await self._on_publish(turn)

    async def aclose(self) -> None:
        """Cancel outstanding response tasks."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
