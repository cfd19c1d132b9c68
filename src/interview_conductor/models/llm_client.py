"""
LLM client abstraction.

Provides a unified interface for interacting with Ollama locally.
Every call either returns usable text or raises: empty output is a
ModelOutputError, CLI failures surface as OllamaError after retries.
"""

import ast
import asyncio
import json
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from interview_conductor.config import get_settings
from interview_conductor.errors import ModelOutputError, TransientNetworkError

logger = logging.getLogger(__name__)

# Default model for Ollama
DEFAULT_OLLAMA_MODEL = "gpt-oss:20b"


class Message(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")


class LLMResponse(BaseModel):
    """Response from an LLM."""

    content: str = Field(..., description="Generated text content")
    finish_reason: str = Field(default="stop", description="Reason for completion")
    model: str = Field(default="", description="Model used for generation")


class OllamaError(TransientNetworkError):
    """Exception raised when Ollama CLI fails."""

    code = "OLLAMA"

    def __init__(self, message: str, return_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message, details={"return_code": return_code, "stderr": stderr})
        self.return_code = return_code
        self.stderr = stderr


class LLMClientBase(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: Conversation history.
            temperature: Sampling temperature.
            **kwargs: Additional model-specific parameters.

        Returns:
            Generated response.

        Raises:
            TransientNetworkError: If the model could not be reached.
        """
        ...

    async def complete(
        self,
        system_prompt: str,
        history: list[Message],
        temperature: float = 0.7,
    ) -> str:
        """
        Produce the next assistant turn for a system prompt and history.

        Args:
            system_prompt: Instructions placed ahead of the history.
            history: Prior user/assistant/system messages.
            temperature: Sampling temperature.

        Returns:
            The stripped reply text.

        Raises:
            ModelOutputError: If the model returned nothing.
        """
        messages = [Message(role="system", content=system_prompt), *history]
        response = await self.chat(messages, temperature=temperature)
        text = response.content.strip()
        if not text:
            raise ModelOutputError("Model completion is missing content")
        return text

    async def chat_json(
        self,
        messages: list[Message],
        schema: dict[str, Any] | None = None,
        temperature: float = 0.0,
    ) -> dict[str, Any]:
        """
        Generate a chat completion and parse a JSON object out of it.

        Args:
            messages: Conversation history.
            schema: Optional JSON schema appended to the instructions.
            temperature: Sampling temperature (low for deterministic output).

        Returns:
            Parsed JSON object.

        Raises:
            ModelOutputError: If no JSON object could be recovered.
        """
        if schema:
            instruction = (
                "You must respond with valid JSON only. No additional text or explanation. "
                f"Your response must match this JSON schema: {json.dumps(schema)}"
            )
        else:
            instruction = "You must respond with valid JSON only. No additional text or explanation."
        augmented = [Message(role="system", content=instruction), *messages]

        response = await self.chat(augmented, temperature=temperature)
        content = response.content.strip()
        if not content:
            raise ModelOutputError("Model returned an empty JSON response")

        parsed = extract_json_object(content)
        if parsed is None:
            logger.debug(f"Unparseable JSON response: {content[:500]}")
            raise ModelOutputError("Model response did not contain a JSON object")
        return parsed


class LLMClient(LLMClientBase):
    """
    Ollama-based LLM client.

    Uses the Ollama CLI to run the configured model locally.
    All generation happens through subprocess calls to `ollama run`.
    """

    def __init__(
        self,
        model: str | None = None,
        max_retries: int | None = None,
        timeout: int | None = None,
    ) -> None:
        """
        Initialize the Ollama LLM client.

        Args:
            model: Model name (defaults to the configured model).
            max_retries: Number of retries on failure.
            timeout: Timeout in seconds for Ollama commands.
        """
        settings = get_settings()
        self._model = model or settings.llm_model_name or DEFAULT_OLLAMA_MODEL
        self._max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self._timeout = timeout or settings.llm_timeout

        logger.info(f"Initialized Ollama LLM client with model: {self._model}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    def _build_prompt_from_messages(self, messages: list[Message]) -> str:
        """
        Build a single prompt string from a list of messages.

        Args:
            messages: List of conversation messages.

        Returns:
            Formatted prompt string.
        """
        prompt_parts: list[str] = []

        for msg in messages:
            role = msg.role.lower()
            content = msg.content.strip()
            prompt_parts.append(f"[{role.upper()}]\n{content}\n")

        # Marks where the assistant should respond
        prompt_parts.append("[ASSISTANT]\n")

        return "\n".join(prompt_parts)

    def _run_ollama_sync(self, prompt: str) -> str:
        """
        Run Ollama CLI synchronously with retry logic.

        Args:
            prompt: The prompt to send to the model.

        Returns:
            The model's response text, stripped of whitespace.

        Raises:
            OllamaError: If Ollama fails after all retries.
        """
        cmd = ["ollama", "run", self._model]

        last_error: OllamaError | None = None
        attempts = 0

        while attempts <= self._max_retries:
            attempts += 1
            try:
                logger.debug(f"Running Ollama (attempt {attempts}): {' '.join(cmd)}")

                process = subprocess.run(
                    cmd,
                    input=prompt,
                    capture_output=True,
                    text=True,
                    timeout=self._timeout,
                )

                if process.returncode != 0:
                    error_msg = process.stderr.strip() or f"Exit code: {process.returncode}"
                    logger.warning(f"Ollama failed (attempt {attempts}): {error_msg}")
                    last_error = OllamaError(
                        f"Ollama exited with code {process.returncode}",
                        return_code=process.returncode,
                        stderr=process.stderr,
                    )
                    continue

                response = process.stdout.strip()
                logger.debug(f"Ollama response length: {len(response)} chars")
                return response

            except subprocess.TimeoutExpired:
                logger.warning(f"Ollama timed out after {self._timeout}s (attempt {attempts})")
                last_error = OllamaError(f"Ollama timed out after {self._timeout} seconds")

            except FileNotFoundError:
                error_msg = "Ollama CLI not found. Please install Ollama: https://ollama.ai"
                logger.error(error_msg)
                raise OllamaError(error_msg)

        raise last_error or OllamaError("Ollama failed after all retries")

    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a chat completion using Ollama.

        Args:
            messages: Conversation history.
            temperature: Sampling temperature (Ollama CLI uses modelfile defaults).
            **kwargs: Ignored by the CLI client.

        Returns:
            Generated response.
        """
        prompt = self._build_prompt_from_messages(messages)
        loop = asyncio.get_running_loop()
        response_text = await loop.run_in_executor(None, self._run_ollama_sync, prompt)
        return LLMResponse(content=response_text, finish_reason="stop", model=self._model)

    async def close(self) -> None:
        """Close the client and release resources."""
        # No persistent resources for the subprocess-based client
        return None


def _fix_json_string(json_str: str) -> str:
    """
    Attempt to fix common JSON issues from LLM output.

    Args:
        json_str: Raw JSON string that may have issues.

    Returns:
        Cleaned JSON string.
    """
    if not json_str:
        return ""

    result = json_str.strip()

    # Strip common fenced blocks.
    result = re.sub(r"^```(?:json)?\s*", "", result, flags=re.IGNORECASE)
    result = re.sub(r"\s*```$", "", result)

    # Normalize curly quotes.
    result = (
        result.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )

    # Remove trailing commas before closing braces/brackets.
    result = re.sub(r",(\s*[}\]])", r"\1", result)

    # Convert Python literals to JSON literals.
    result = re.sub(r"\bNone\b", "null", result)
    result = re.sub(r"\bTrue\b", "true", result)
    result = re.sub(r"\bFalse\b", "false", result)

    # Quote bare keys right after { or , so values are left alone.
    result = re.sub(
        r"([\{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)",
        r'\1"\2"\3',
        result,
    )

    if result.count("'") > 0 and result.count('"') == 0:
        result = result.replace("'", '"')

    return result


def _coerce_to_json_types(obj: Any) -> Any:
    """Coerce a Python literal (from ast.literal_eval) to JSON-safe types."""
    if obj is ...:
        return None
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {str(k): _coerce_to_json_types(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_coerce_to_json_types(v) for v in obj]
    return str(obj)


def parse_json_loose(raw: str) -> dict[str, Any] | list[Any] | None:
    """Parse JSON with best-effort repair.

    Returns a dict/list on success, else None.
    """
    if not raw:
        return None

    cleaned = _fix_json_string(raw)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Fallback: Python literal syntax (single quotes, trailing commas).
    try:
        obj = ast.literal_eval(raw.strip())
    except (ValueError, SyntaxError):
        try:
            obj = ast.literal_eval(cleaned)
        except (ValueError, SyntaxError):
            return None

    if not isinstance(obj, (dict, list, tuple, set)):
        return None

    return json.loads(json.dumps(_coerce_to_json_types(obj)))


def extract_json_object(content: str) -> dict[str, Any] | None:
    """
    Find and parse the first balanced JSON object in free-form model output.

    Args:
        content: Model output that may wrap JSON in prose or code fences.

    Returns:
        The parsed object, or None if nothing parseable was found.
    """
    content = content.strip()
    start_idx = content.find("{")

    if start_idx != -1:
        depth = 0
        end_idx = len(content)
        for i, char in enumerate(content[start_idx:], start=start_idx):
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end_idx = i + 1
                    break

        parsed = parse_json_loose(content[start_idx:end_idx])
        if isinstance(parsed, dict):
            return parsed

    parsed = parse_json_loose(content)
    return parsed if isinstance(parsed, dict) else None
