"""
Models module for LLM client abstraction.

Provides a unified interface for interacting with Ollama locally.
"""

from interview_conductor.models.llm_client import (
    DEFAULT_OLLAMA_MODEL,
    LLMClient,
    LLMClientBase,
    LLMResponse,
    Message,
    OllamaError,
    extract_json_object,
    parse_json_loose,
)

__all__ = [
    "LLMClient",
    "LLMClientBase",
    "LLMResponse",
    "Message",
    "OllamaError",
    "DEFAULT_OLLAMA_MODEL",
    "extract_json_object",
    "parse_json_loose",
]
