"""
Text-based interview interface.

Provides a command-line interface for conducting interviews
via text input/output.
"""

import asyncio

from interview_conductor.agents.accountability import AccountabilityScorer
from interview_conductor.db.sink import CheckpointSink
from interview_conductor.models.llm_client import LLMClientBase
from interview_conductor.orchestrator.events import PasteDetected, UserFinal
from interview_conductor.orchestrator.interview_orchestrator import InterviewOrchestrator
from interview_conductor.orchestrator.schemas import (
    InterviewSession,
    InterviewSummary,
    Speaker,
    TurnRecord,
)
from interview_conductor.scripts.script_source import ScriptSource

PASTE_COMMAND = "/paste"
QUIT_COMMANDS = ("quit", "exit", "end")


class TextInterface:
    """
    Command-line text interface for interviews.

    Candidate lines become user-final events; ``/paste <code>`` simulates
    pasting code into the editor. Interviewer turns are printed as the
    session publishes them.
    """

    def __init__(
        self,
        llm_client: LLMClientBase | None = None,
        *,
        script_source: ScriptSource | None = None,
        accountability_scorer: AccountabilityScorer | None = None,
        sink: CheckpointSink | None = None,
    ) -> None:
        """
        Initialize the text interface.

        Args:
            llm_client: Model client for the session.
            script_source: Source of interview scripts.
            accountability_scorer: Scorer for paste evaluations.
            sink: Checkpoint sink.
        """
        self._orchestrator = InterviewOrchestrator(
            llm_client=llm_client,
            script_source=script_source,
            accountability_scorer=accountability_scorer,
            sink=sink,
            on_publish=self.display_turn,
        )

    @property
    def orchestrator(self) -> InterviewOrchestrator:
        """Get the orchestrator driven by this interface."""
        return self._orchestrator

    async def run(self) -> None:
        """Run the interactive interview session."""
        print("\n" + "=" * 60)
        print("Welcome to the Interview Conductor")
        print("=" * 60 + "\n")

        name = await self._get_input("Candidate name: ")
        company_id = (await self._get_input("Company id [acme]: ")).strip() or "acme"
        role_id = (await self._get_input("Role id [frontend-engineer]: ")).strip() or "frontend-engineer"

        print("\n" + "-" * 60)
        print("Starting Interview  (type /paste <code> to paste, 'quit' to end)")
        print("-" * 60 + "\n")

        session = InterviewSession(candidate_name=name.strip(), company_id=company_id, role_id=role_id)
        await self._orchestrator.start_interview(session)
        runner = asyncio.create_task(self._orchestrator.run())

        try:
            while self._orchestrator.is_active and not runner.done():
                line = await self._get_input("")
                if runner.done():
                    break
                if line.strip().lower() in QUIT_COMMANDS:
                    print("\nEnding interview...")
                    break
                if line.startswith(PASTE_COMMAND):
                    content = line[len(PASTE_COMMAND):].strip()
                    if content:
                        await self._orchestrator.submit(PasteDetected(content=content))
                    continue
                if line.strip():
                    await self._orchestrator.submit(UserFinal(text=line))
        finally:
            if runner.done():
                # Surfaces a fatal session error.
                runner.result()

        summary = await self._orchestrator.end_interview()
        runner.cancel()
        await self._display_summary(summary)

    async def display_turn(self, turn: TurnRecord) -> None:
        """Print an interviewer turn; candidate turns are already on screen."""
        if turn.speaker == Speaker.ASSISTANT:
            label = "Interviewer (paste)" if turn.paste_evaluation_id else "Interviewer"
            print(f"\n{label}: {turn.text}\n")

    async def _get_input(self, prompt: str) -> str:
        """
        Get input with a specific prompt without blocking the event loop.

        Args:
            prompt: Prompt to display.

        Returns:
            User's input.
        """
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, input, prompt)
        except EOFError:
            return "exit"

    async def _display_summary(self, summary: InterviewSummary) -> None:
        """
        Display the interview summary.

        Args:
            summary: Summary returned when the interview ended.
        """
        assessment = summary.assessment
        print("\n" + "=" * 60)
        print("Interview Summary")
        print("=" * 60)
        print(f"\nCandidate: {summary.session.candidate_name}")
        print(f"Position: {summary.session.role_id} at {summary.session.company_id}")
        print(f"Duration: {summary.session.started_at} to {summary.session.concluded_at}")
        print(f"Total turns: {len(summary.transcript)}")

        print(f"\nBackground confidence: {assessment.confidence:.1f}")
        print(f"Background questions: {assessment.questions_asked}")
        if assessment.transition_reason:
            print(f"Left background stage via: {assessment.transition_reason}")
        if assessment.pillars is not None:
            for pillar, score in assessment.pillars.model_dump().items():
                print(f"  - {pillar}: {score:.0f}")

        for evaluation in summary.paste_evaluations:
            print(f"\nPaste evaluation ({evaluation.answer_count} answer(s)):")
            if evaluation.accountability is not None:
                result = evaluation.accountability
                print(f"  Understanding: {result.understanding} ({result.accountability_score:.0f})")
                print(f"  {result.caption}")
            else:
                print("  Not scored")

        if summary.discarded_replies:
            print(f"\nDiscarded replies: {len(summary.discarded_replies)}")

        print("\n" + "=" * 60)
