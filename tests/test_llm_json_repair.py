import subprocess

import pytest

from interview_conductor.errors import ModelOutputError
from interview_conductor.models.llm_client import (
    LLMClient,
    LLMResponse,
    Message,
    OllamaError,
    parse_json_loose,
)


@pytest.mark.asyncio
async def test_chat_json_repairs_single_quotes_and_trailing_commas() -> None:
    client = LLMClient()

    async def fake_chat(messages: list[Message], temperature: float = 0.7, **kwargs):
        return LLMResponse(content="{'a': 1, 'b': 'x',}", model="test")

    client.chat = fake_chat  # type: ignore[assignment]

    data = await client.chat_json(messages=[Message(role="user", content="hi")])
    assert data == {"a": 1, "b": "x"}


@pytest.mark.asyncio
async def test_chat_json_repairs_unquoted_keys_and_fenced_json() -> None:
    client = LLMClient()

    async def fake_chat(messages: list[Message], temperature: float = 0.7, **kwargs):
        return LLMResponse(
            content="""```json
            {a: 1, b: true, c: null,}
            ```""",
            model="test",
        )

    client.chat = fake_chat  # type: ignore[assignment]

    data = await client.chat_json(messages=[Message(role="user", content="hi")])
    assert data == {"a": 1, "b": True, "c": None}


@pytest.mark.asyncio
async def test_chat_json_raises_on_prose() -> None:
    client = LLMClient()

    async def fake_chat(messages: list[Message], temperature: float = 0.7, **kwargs):
        return LLMResponse(content="Sorry, I cannot score that.", model="test")

    client.chat = fake_chat  # type: ignore[assignment]

    with pytest.raises(ModelOutputError):
        await client.chat_json(messages=[Message(role="user", content="hi")])


@pytest.mark.asyncio
async def test_complete_rejects_empty_output() -> None:
    client = LLMClient()

    async def fake_chat(messages: list[Message], temperature: float = 0.7, **kwargs):
        return LLMResponse(content="   ", model="test")

    client.chat = fake_chat  # type: ignore[assignment]

    with pytest.raises(ModelOutputError):
        await client.complete("You are an interviewer.", [])


def test_parse_json_loose_handles_python_literals() -> None:
    assert parse_json_loose('{"ready": True, "note": None}') == {"ready": True, "note": None}
    assert parse_json_loose("not json") is None
    assert parse_json_loose("") is None


def test_ollama_failure_is_retried(monkeypatch) -> None:
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        if len(calls) == 1:
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="model loading")
        return subprocess.CompletedProcess(cmd, 0, stdout="  Hello Ada!  \n", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    client = LLMClient(model="test-model", max_retries=1, timeout=5)

    assert client._run_ollama_sync("[USER]\nhi\n") == "Hello Ada!"
    assert calls[0] == ["ollama", "run", "test-model"]
    assert len(calls) == 2


def test_ollama_gives_up_after_retries(monkeypatch) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 2, stdout="", stderr="boom"),
    )
    client = LLMClient(model="test-model", max_retries=0, timeout=5)

    with pytest.raises(OllamaError) as excinfo:
        client._run_ollama_sync("prompt")
    assert excinfo.value.return_code == 2
