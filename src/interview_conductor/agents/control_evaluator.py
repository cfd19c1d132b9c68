"""
CONTROL evaluator agent.

Scores the candidate's latest background answer on the three pillars in an
out-of-band exchange that never touches the visible conversation.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from pydantic import ValidationError

from interview_conductor.errors import (
    EvaluatorMalformedError,
    EvaluatorTimeoutError,
    ModelOutputError,
)
from interview_conductor.models.llm_client import LLMClientBase, Message
from interview_conductor.orchestrator.schemas import (
    ControlResult,
    InterviewScript,
    PillarRationales,
    PillarScores,
    Speaker,
    TurnRecord,
)

logger = logging.getLogger(__name__)

BLANK_RATIONALE = "Blank response provided - no evidence to evaluate."
NO_EVIDENCE = "No evidence provided."


def blank_answer_result() -> ControlResult:
    """The fixed 0/0/0 result for an empty answer."""
    return ControlResult(
        pillars=PillarScores(adaptability=0, creativity=0, reasoning=0),
        rationale=BLANK_RATIONALE,
        pillar_rationales=PillarRationales(
            adaptability=NO_EVIDENCE,
            creativity=NO_EVIDENCE,
            reasoning=NO_EVIDENCE,
        ),
    )


class ControlEvaluatorBase(ABC):
    """Abstract base class for CONTROL evaluators."""

    @abstractmethod
    async def evaluate(
        self,
        context: list[TurnRecord],
        last_question: str,
        answer: str,
        script: InterviewScript,
    ) -> ControlResult:
        """
        Score the latest answer.

        Args:
            context: Recent visible turns before the last question, read-only.
            last_question: The interviewer turn the answer responds to.
            answer: The candidate's latest answer (the only scored text).
            script: Interview script for company/role wording.

        Returns:
            Validated CONTROL result.

        Raises:
            EvaluatorMalformedError: If the output fails validation.
            TransientNetworkError: If the evaluator could not be reached in time.
        """
        ...


class ControlEvaluator(ControlEvaluatorBase):
    """
    LLM-backed CONTROL evaluator.

    Only the last answer earns credit; earlier turns are context for terms.
    Output is validated strictly, nothing is defaulted.
    """

    SYSTEM_PROMPT = """You are the evaluation module for a technical interview at {company} for the {role} position.
Stage: Background.

CRITICAL RULES:
- Score ONLY the last user answer that follows.
- Use the read-only history for understanding terms only; DO NOT award credit for past turns.
- If the last user answer contains no concrete, attributable evidence for a pillar, output 0 for that pillar.
- Every non-zero pillar MUST be justified with a short rationale referencing exact phrases from the last answer.
- DO NOT initiate or suggest moving to coding; that decision is external and controlled by the system.

Read-only history:
{history}

Output: STRICT JSON only (no preface) with fields: pillars {{adaptability, creativity, reasoning}} (0-100), rationale (string explaining your decision), pillarRationales {{adaptability: string, creativity: string, reasoning: string}}."""

    BLANK_NOTICE = (
        "IMPORTANT: The user provided a blank or empty response. You MUST return 0 for all "
        "pillars (adaptability: 0, creativity: 0, reasoning: 0)."
    )

    def __init__(self, llm_client: LLMClientBase, timeout: float = 5.0) -> None:
        """
        Initialize the evaluator.

        Args:
            llm_client: Model client used for scoring.
            timeout: Upper bound in seconds for one evaluation.
        """
        self._llm_client = llm_client
        self._timeout = timeout

    def _format_history(self, context: list[TurnRecord]) -> str:
        if not context:
            return "(none)"
        lines = []
        for turn in context:
            label = "Candidate" if turn.speaker == Speaker.USER else "Interviewer"
            lines.append(f"{label}: {turn.text}")
        return "\n".join(lines)

    def build_messages(
        self,
        context: list[TurnRecord],
        last_question: str,
        answer: str,
        script: InterviewScript,
    ) -> list[Message]:
        """Build the scoring exchange: instructions, the last question, then the answer."""
        system = self.SYSTEM_PROMPT.format(
            company=script.display_company,
            role=script.display_role,
            history=self._format_history(context),
        )
        if not answer.strip():
            system = f"{system}\n\n{self.BLANK_NOTICE}"
        messages = [Message(role="system", content=system)]
        if last_question:
            messages.append(Message(role="assistant", content=last_question))
        messages.append(Message(role="user", content=answer))
        return messages

    async def evaluate(
        self,
        context: list[TurnRecord],
        last_question: str,
        answer: str,
        script: InterviewScript,
    ) -> ControlResult:
        """Score the latest answer."""
        messages = self.build_messages(context, last_question, answer, script)
        try:
            data = await asyncio.wait_for(
                self._llm_client.chat_json(messages, temperature=0.0),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise EvaluatorTimeoutError(f"CONTROL evaluation exceeded {self._timeout}s") from e
        except ModelOutputError as e:
            raise EvaluatorMalformedError(f"CONTROL evaluation unparseable: {e.message}") from e

        try:
            result = ControlResult.model_validate(data)
        except ValidationError as e:
            raise EvaluatorMalformedError(
                "CONTROL evaluation failed validation",
                details={"errors": e.errors(include_url=False)},
            ) from e

        if not answer.strip():
            if not result.pillars.is_zero():
                logger.warning(f"Evaluator scored a blank answer {result.pillars.model_dump()}; forcing 0/0/0")
            return blank_answer_result()

        logger.debug(
            f"CONTROL scored a={result.pillars.adaptability} c={result.pillars.creativity} "
            f"r={result.pillars.reasoning}"
        )
        return result
