"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, cast

import httpx
import pytest

from openai import APIConnectionError, AsyncOpenAI

from lorekeeper.ai.client import AIClient, AIResponseError, ClientSettings


class _FakeCompletions:
    def __init__(self, responses: list[Any]):
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class _FakeModels:
    def __init__(self, payload: list[SimpleNamespace]):
        self._payload = payload
        self.calls = 0

    async def list(self) -> SimpleNamespace:
        self.calls += 1
        return SimpleNamespace(data=self._payload)


def _settings(**overrides: Any) -> ClientSettings:
    values: dict[str, Any] = {
        "base_url": "http://local",
        "api_key": "test",
        "model": "stub",
        "retry_min_seconds": 0,
        "retry_max_seconds": 0,
    }
    values.update(overrides)
    return ClientSettings(**values)


def _make_client(responses: list[Any], **settings: Any) -> tuple[AIClient, _FakeCompletions]:
    completions = _FakeCompletions(responses)
    fake = SimpleNamespace(
        chat=SimpleNamespace(completions=completions),
        models=_FakeModels([SimpleNamespace(id="test-model")]),
    )
    return AIClient(_settings(**settings), client=cast(AsyncOpenAI, fake)), completions


def _completion(message: SimpleNamespace, finish_reason: str = "stop", **extra: Any) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=finish_reason)], **extra)


def _tool_call(call_id: str | None, name: str, arguments: str) -> SimpleNamespace:
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.mark.asyncio
async def test_list_models_caches_results() -> None:
    payload = [SimpleNamespace(id="minimax/minimax-m2.1"), SimpleNamespace(id="openai/gpt-4o-mini")]
    fake_models = _FakeModels(payload)
    fake_client = SimpleNamespace(
        chat=SimpleNamespace(completions=_FakeCompletions([])),
        models=fake_models,
    )
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake_client))

    first = await client.list_models()
    second = await client.list_models()

    assert first == ["minimax/minimax-m2.1", "openai/gpt-4o-mini"]
    assert second == first  # cached result
    assert fake_models.calls == 1


@pytest.mark.asyncio
async def test_generate_with_tools_normalizes_tool_calls() -> None:
    message = SimpleNamespace(
        content=None,
        tool_calls=[
            _tool_call("call_a", "query_chapter", '{"chapter_number": 2, "question": "?"}'),
            _tool_call(None, "list_chapters", "{}"),
        ],
        reasoning="Chapter 2 mentions the key.",
        model_extra={"reasoning_details": [{"type": "reasoning.text"}]},
    )
    client, completions = _make_client([_completion(message, "tool_calls")])

    turn = await client.generate_with_tools(
        [{"role": "user", "content": "Where is the key?"}],
        tools=[{"type": "function", "function": {"name": "list_chapters", "parameters": {"type": "object"}}}],
        temperature=0.3,
        max_tokens=200,
        extra_body={"reasoning": {"effort": "high"}},
    )

    assert [(call.id, call.name) for call in turn.tool_calls] == [
        ("call_a", "query_chapter"),
        ("call_1", "list_chapters"),
    ]
    assert turn.tool_calls[0].arguments == '{"chapter_number": 2, "question": "?"}'
    assert turn.reasoning == "Chapter 2 mentions the key."
    assert turn.reasoning_details == [{"type": "reasoning.text"}]
    assert turn.finish_reason == "tool_calls"

    payload = completions.calls[0]
    assert payload["model"] == "stub"
    assert payload["tool_choice"] == "auto"
    assert payload["max_tokens"] == 200
    assert payload["extra_body"] == {"reasoning": {"effort": "high"}}
    assert "stream" not in payload


@pytest.mark.asyncio
async def test_tool_choice_is_omitted_without_tools() -> None:
    message = SimpleNamespace(content="Plain answer.", tool_calls=None)
    client, completions = _make_client([_completion(message)])

    turn = await client.generate_with_tools(
        [{"role": "user", "content": "hi"}],
        tools=[],
        tool_choice="none",
        model="override-model",
    )

    assert turn.content == "Plain answer."
    assert not turn.has_tool_calls
    assert "tools" not in completions.calls[0]
    assert "tool_choice" not in completions.calls[0]
    assert completions.calls[0]["model"] == "override-model"


@pytest.mark.asyncio
async def test_reasoning_falls_back_to_response_extras() -> None:
    message = SimpleNamespace(content="ok", tool_calls=None)
    response = _completion(message, model_extra={"reasoning": "top-level reasoning"})
    client, _ = _make_client([response])

    turn = await client.generate_with_tools([{"role": "user", "content": "hi"}])

    assert turn.reasoning == "top-level reasoning"


@pytest.mark.asyncio
async def test_missing_choices_raise_response_error() -> None:
    client, _ = _make_client([SimpleNamespace(choices=[])])

    with pytest.raises(AIResponseError):
        await client.generate_with_tools([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_transient_errors_are_retried() -> None:
    request = httpx.Request("POST", "http://local/chat/completions")
    message = SimpleNamespace(content="recovered", tool_calls=None)
    client, completions = _make_client(
        [APIConnectionError(request=request), _completion(message)],
        max_retries=3,
    )

    turn = await client.generate_with_tools([{"role": "user", "content": "hi"}])

    assert turn.content == "recovered"
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_empty_message_list_is_rejected() -> None:
    client, _ = _make_client([])

    with pytest.raises(ValueError):
        await client.generate_with_tools([])


@pytest.mark.asyncio
async def test_metadata_is_merged_from_settings_and_call() -> None:
    message = SimpleNamespace(content="ok", tool_calls=None)
    client, completions = _make_client([_completion(message)], metadata={"app": "lorekeeper"})

    await client.generate_with_tools([{"role": "user", "content": "hi"}], metadata={"session": "s1"})

    assert completions.calls[0]["metadata"] == {"app": "lorekeeper", "session": "s1"}


@pytest.mark.asyncio
async def test_aclose_awaits_underlying_close() -> None:
    closed = False

    async def close() -> None:
        nonlocal closed
        closed = True

    fake = SimpleNamespace(chat=SimpleNamespace(completions=_FakeCompletions([])), close=close)
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake))

    await client.aclose()

    assert closed is True
