"""
Accountability scoring for pasted code.

Judges whether the candidate understands code they pasted in from an
external source, from the questions asked and the answers given.
"""

import logging
from abc import ABC, abstractmethod

import httpx
from pydantic import ValidationError

from interview_conductor.config import get_settings
from interview_conductor.errors import (
    EvaluatorMalformedError,
    ModelOutputError,
    TransientNetworkError,
)
from interview_conductor.models.llm_client import LLMClientBase, Message
from interview_conductor.orchestrator.schemas import AccountabilityResult

logger = logging.getLogger(__name__)


class AccountabilityScorer(ABC):
    """Abstract base class for accountability scorers."""

    @abstractmethod
    async def score(
        self,
        pasted_content: str,
        ai_question: str,
        user_answer: str,
        coding_task: str,
    ) -> AccountabilityResult:
        """
        Score the candidate's ownership of pasted code.

        Args:
            pasted_content: The pasted code.
            ai_question: The interviewer's questions, joined.
            user_answer: The candidate's answers, joined.
            coding_task: The coding challenge the candidate is working on.

        Returns:
            Validated accountability result.

        Raises:
            EvaluatorMalformedError: If the scorer output is invalid.
            TransientNetworkError: If the scorer could not be reached.
        """
        ...

    async def close(self) -> None:
        """Release resources held by the scorer."""
        return None


def _validate(data: object) -> AccountabilityResult:
    try:
        return AccountabilityResult.model_validate(data)
    except ValidationError as e:
        raise EvaluatorMalformedError(
            "Accountability result failed validation",
            details={"errors": e.errors(include_url=False)},
        ) from e


class LLMAccountabilityScorer(AccountabilityScorer):
    """Accountability scorer backed by the model client."""

    SYSTEM_PROMPT = """You are evaluating whether a candidate understands code they pasted from an external source during a coding interview.

Context:
- Coding Task: {coding_task}
- Code Pasted: {pasted_content}
- AI's Question: {ai_question}
- Candidate's Answer: {user_answer}

Your Task:
Evaluate if the candidate truly understands the pasted code and can take ownership of it.

Evaluation Criteria:
1. Full Understanding: Candidate clearly explains the code, understands all key concepts, can modify it independently
2. Partial Understanding: Candidate grasps some parts but struggles with details or key concepts
3. No Understanding: Candidate cannot explain the code, gives vague/incorrect answers, or avoids the question

Accountability Score (0-100):
- 80-100: Can fully own and modify the code independently
- 50-79: Understands main idea but would need help with modifications
- 20-49: Surface-level understanding, cannot explain key parts
- 0-19: No meaningful understanding, just copied code

Return ONLY valid JSON with this exact structure:
{{
  "understanding": "full" | "partial" | "none",
  "accountabilityScore": number (0-100),
  "reasoning": "Brief explanation of their understanding level",
  "caption": "Short description for video evidence (e.g., 'Pasted React hook with full understanding')"
}}"""

    def __init__(self, llm_client: LLMClientBase) -> None:
        """
        Initialize the scorer.

        Args:
            llm_client: Model client used for scoring.
        """
        self._llm_client = llm_client

    async def score(
        self,
        pasted_content: str,
        ai_question: str,
        user_answer: str,
        coding_task: str,
    ) -> AccountabilityResult:
        """Score the candidate's ownership of pasted code."""
        system = self.SYSTEM_PROMPT.format(
            coding_task=coding_task or "Not specified",
            pasted_content=pasted_content,
            ai_question=ai_question,
            user_answer=user_answer,
        )
        messages = [
            Message(role="system", content=system),
            Message(
                role="user",
                content="Evaluate the candidate's understanding of the pasted code based on their answer.",
            ),
        ]
        try:
            data = await self._llm_client.chat_json(messages, temperature=0.3)
        except ModelOutputError as e:
            raise EvaluatorMalformedError(f"Accountability output unparseable: {e.message}") from e
        return _validate(data)


class HttpAccountabilityScorer(AccountabilityScorer):
    """
    Accountability scorer that delegates to an external HTTP service.

    The service receives `{pastedContent, aiQuestion, userAnswer, codingTask}`
    and answers with the accountability JSON.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        timeout: int | None = None,
    ) -> None:
        """
        Initialize the scorer.

        Args:
            endpoint: Scoring service URL (uses config if not provided).
            timeout: Request timeout in seconds (uses config if not provided).
        """
        settings = get_settings()
        self._endpoint = endpoint or settings.accountability_endpoint
        self._timeout = timeout or settings.accountability_timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def score(
        self,
        pasted_content: str,
        ai_question: str,
        user_answer: str,
        coding_task: str,
    ) -> AccountabilityResult:
        """Score the candidate's ownership of pasted code."""
        if not self._endpoint:
            raise TransientNetworkError("No accountability endpoint configured")

        client = await self._get_client()
        payload = {
            "pastedContent": pasted_content,
            "aiQuestion": ai_question,
            "userAnswer": user_answer,
            "codingTask": coding_task,
        }
        try:
            response = await client.post(self._endpoint, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientNetworkError(
                f"Accountability request failed: {e}",
                details={"endpoint": self._endpoint},
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise EvaluatorMalformedError("Accountability response is not JSON") from e

        logger.debug(f"Accountability service answered: {data}")
        return _validate(data)
