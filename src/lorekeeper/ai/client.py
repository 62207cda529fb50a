"""OpenAI-compatible turn provider for retrieval sessions.

:class:`AIClient` speaks the plain chat-completions API (OpenRouter and most
gateways accept it), requests one non-streaming completion per turn, and
normalizes the response into an :class:`~lorekeeper.ai.retrieval.types.AssistantTurn`.
Transient transport failures are retried here with tenacity, so the
retrieval loop only ever sees a turn or a final error.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionToolChoiceOptionParam,
    ChatCompletionToolParam,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .retrieval.types import AssistantTurn, ToolCall

__all__ = ["AIClient", "AIResponseError", "ClientSettings"]

LOGGER = logging.getLogger(__name__)

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    RateLimitError,
    APIStatusError,
    APIError,
    httpx.TimeoutException,
)


class AIResponseError(RuntimeError):
    """Raised when the provider returns a response without a usable choice."""


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry settings for :class:`AIClient`.

    Attributes:
        base_url: OpenAI-compatible endpoint root.
        api_key: Bearer token for the endpoint.
        model: Default model identifier for completions.
        organization: Optional organization header.
        request_timeout: Per-request timeout in seconds.
        max_retries: Attempts per completion, including the first.
        retry_min_seconds: Backoff multiplier between attempts.
        retry_max_seconds: Upper bound for one backoff wait.
        default_headers: Extra headers sent with every request.
        metadata: Request metadata merged into every completion.
        debug_logging: Dump full request payloads at debug level.
    """

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Chat-completions turn provider with retry semantics."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client if client is not None else _open_client(settings)
        self._model_ids: list[str] | None = None
        self._model_ids_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def generate_with_tools(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = "auto",
        temperature: float | None = 0.3,
        max_tokens: int | None = None,
        extra_body: Mapping[str, Any] | None = None,
        metadata: Mapping[str, str] | None = None,
        model: str | None = None,
        **extra_params: Any,
    ) -> AssistantTurn:
        """Request one completion and normalize it into an assistant turn.

        Args:
            messages: Conversation so far, as chat message dicts.
            tools: Function tools offered to the model. ``tool_choice`` is
                only sent alongside a non-empty tool list.
            tool_choice: Tool selection mode.
            temperature: Sampling temperature; ``None`` leaves the provider default.
            max_tokens: Optional completion cap.
            extra_body: Provider-specific fields merged into the request body.
            metadata: Per-request metadata merged over ``settings.metadata``.
            model: Model override for this request.

        Raises:
            AIResponseError: The provider answered without a usable choice.
        """

        request: dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": _message_list(messages),
        }
        offered = list(tools or ())
        if offered:
            request["tools"] = offered
            if tool_choice:
                request["tool_choice"] = tool_choice
        if temperature is not None:
            request["temperature"] = temperature
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        merged = {**(self._settings.metadata or {}), **(metadata or {})}
        if merged:
            request["metadata"] = merged
        if extra_body:
            request["extra_body"] = dict(extra_body)
        request.update(extra_params)

        LOGGER.debug(
            "Chat completion via %s: %d message(s), %d tool(s)",
            request["model"],
            len(request["messages"]),
            len(offered),
        )
        if self._settings.debug_logging:
            _dump_request(request)

        response: Any = None
        async for attempt in self._retry_policy():
            with attempt:
                response = await self._client.chat.completions.create(**request)
        return _to_turn(response)

    async def list_models(self, *, force_refresh: bool = False) -> list[str]:
        """Model identifiers the endpoint advertises, cached after the first call."""

        async with self._model_ids_lock:
            if self._model_ids is None or force_refresh:
                listing = await self._client.models.list()
                self._model_ids = [item.id for item in listing.data if getattr(item, "id", None)]
            return list(self._model_ids)

    async def aclose(self) -> None:
        """Release the underlying HTTP connections."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        outcome = close()
        if inspect.isawaitable(outcome):
            await outcome

    def _retry_policy(self) -> AsyncRetrying:
        settings = self._settings
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, settings.max_retries)),
            wait=wait_exponential(multiplier=settings.retry_min_seconds, max=settings.retry_max_seconds),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        )


def _open_client(settings: ClientSettings) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=settings.api_key,
        base_url=settings.base_url,
        organization=settings.organization,
        timeout=settings.request_timeout,
        default_headers=dict(settings.default_headers or {}) or None,
    )


def _message_list(messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]) -> list[dict[str, Any]]:
    result = [dict(message) for message in messages]
    if not result:
        raise ValueError("At least one message is required for a completion")
    return result


def _dump_request(request: Mapping[str, Any]) -> None:
    try:
        LOGGER.debug("Completion request:\n%s", json.dumps(request, ensure_ascii=False, indent=2))
    except (TypeError, ValueError):
        LOGGER.debug("Completion request (not JSON-serializable): %r", request)


def _to_turn(response: Any) -> AssistantTurn:
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise AIResponseError("Chat completion returned no choices")
    choice = choices[0]
    message = getattr(choice, "message", None)
    if message is None:
        raise AIResponseError("Chat completion choice has no message")

    calls = []
    for index, raw in enumerate(getattr(message, "tool_calls", None) or ()):
        function = getattr(raw, "function", None)
        arguments = getattr(function, "arguments", None)
        calls.append(
            ToolCall(
                id=str(getattr(raw, "id", None) or f"call_{index}"),
                name=str(getattr(function, "name", None) or ""),
                arguments=arguments if isinstance(arguments, str) else "",
            )
        )

    # Reasoning models report thinking either on the message or the response.
    reasoning = _extra_field(message, "reasoning") or _extra_field(response, "reasoning")
    details = _extra_field(message, "reasoning_details")
    if details is None:
        details = _extra_field(response, "reasoning_details")

    return AssistantTurn(
        content=getattr(message, "content", None),
        tool_calls=tuple(calls),
        reasoning=reasoning if isinstance(reasoning, str) else None,
        reasoning_details=details,
        finish_reason=getattr(choice, "finish_reason", None),
    )


def _extra_field(obj: Any, name: str) -> Any:
    """Read a provider-specific field that may live in a pydantic model's extras."""

    value = getattr(obj, name, None)
    if value is not None:
        return value
    extras = getattr(obj, "model_extra", None)
    if isinstance(extras, Mapping):
        return extras.get(name)
    return None
