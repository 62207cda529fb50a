"""Iteration Controller: the bounded retrieval loop.

A session seeds the conversation with the system instruction and a snapshot
of the story, then alternates between asking the model for a turn and
executing the tools it requests, until the model calls ``finish_retrieval``
or one of the bounds (iterations, no-tool-call retries, cancellation,
provider failure) ends it. Every path returns a :class:`RetrievalResult`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam

from .aggregator import RetrievalAggregator
from .cancellation import CancellationSignal, SignalLike, as_signal, await_cancellable
from .catalog import RETRIEVAL_TOOLS
from .conversation import Conversation
from .dispatcher import ChapterQueryFn, RangeQueryFn, RetrievalToolDispatcher
from .errors import RetrievalCancelled
from .events import RetrievalEventSink, SessionEvents
from .prompts import (
    DefaultPromptRenderer,
    PromptContext,
    PromptRenderer,
    build_initial_variables,
    build_prompt_context,
)
from .types import AssistantTurn, Message, RetrievalContext, RetrievalResult, TerminationReason

__all__ = [
    "RetrievalConfig",
    "RetrievalState",
    "TurnProvider",
    "RetrievalSession",
    "AgenticRetrievalService",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RetrievalConfig:
    """Bounds and request options for a retrieval session.

    Attributes:
        max_iterations: Maximum model turns requested per session.
        no_tool_call_retries: Consecutive turns without tool calls tolerated
            before the session gives up.
        max_chapters_per_range: Widest span a ``query_chapters`` call covers.
        recent_entries_for_retrieval: Recent narrative entries shown in the
            initial prompt.
        max_entries_preview: Lorebook entries listed in the initial prompt.
        temperature: Sampling temperature for the retrieval model.
        max_tokens: Optional completion token cap per turn.
        extra_body: Provider-specific request fields (reasoning, routing).
    """

    max_iterations: int = 10
    no_tool_call_retries: int = 2
    max_chapters_per_range: int = 3
    recent_entries_for_retrieval: int = 5
    max_entries_preview: int = 20
    temperature: float = 0.3
    max_tokens: int | None = None
    extra_body: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.no_tool_call_retries < 1:
            raise ValueError("no_tool_call_retries must be at least 1")
        if self.max_chapters_per_range < 1:
            raise ValueError("max_chapters_per_range must be at least 1")

    def request_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"temperature": self.temperature}
        if self.max_tokens is not None:
            options["max_tokens"] = self.max_tokens
        if self.extra_body:
            options["extra_body"] = dict(self.extra_body)
        return options


class RetrievalState(str, Enum):
    """Lifecycle states of a :class:`RetrievalSession`."""

    IDLE = "idle"
    REQUESTING = "requesting"
    EXECUTING_TOOLS = "executing_tools"
    RETRYING = "retrying"
    COMPLETING = "completing"
    ABORTING = "aborting"
    EXHAUSTED = "exhausted"
    TERMINATED = "terminated"


@runtime_checkable
class TurnProvider(Protocol):
    """Produces the next assistant turn for a conversation."""

    async def generate_with_tools(
        self,
        messages: Sequence[ChatCompletionMessageParam],
        *,
        tools: Sequence[ChatCompletionToolParam],
        tool_choice: str = "auto",
        **options: Any,
    ) -> AssistantTurn:  # pragma: no cover - protocol stub
        ...


# -----------------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------------


class RetrievalSession:
    """One run of the retrieval loop; single use."""

    def __init__(
        self,
        provider: TurnProvider,
        context: RetrievalContext,
        *,
        config: RetrievalConfig | None = None,
        renderer: PromptRenderer | None = None,
        prompt_context: PromptContext | None = None,
        on_query_chapter: ChapterQueryFn | None = None,
        on_query_chapters: RangeQueryFn | None = None,
        cancel_signal: SignalLike | None = None,
        event_sink: RetrievalEventSink | None = None,
        session_id: str | None = None,
        max_iterations: int | None = None,
    ) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self._provider = provider
        self._context = context
        self._config = config or RetrievalConfig()
        # A per-run bound of zero or less requests no turns at all.
        self._max_iterations = (
            self._config.max_iterations if max_iterations is None else max(0, max_iterations)
        )
        self._renderer = renderer or DefaultPromptRenderer()
        self._prompt_context = prompt_context or build_prompt_context()
        self._signal: CancellationSignal | None = as_signal(cancel_signal)
        self._events = SessionEvents(event_sink, self.session_id)
        self._aggregator = RetrievalAggregator()
        self._conversation = Conversation()
        self._dispatcher = RetrievalToolDispatcher(
            context,
            self._aggregator,
            on_query_chapter=on_query_chapter,
            on_query_chapters=on_query_chapters,
            cancel_signal=self._signal,
            events=self._events,
            max_chapters_per_range=self._config.max_chapters_per_range,
        )
        self._state = RetrievalState.IDLE
        self._iterations = 0
        self._started = False

    @property
    def state(self) -> RetrievalState:
        return self._state

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    async def run(self) -> RetrievalResult:
        """Run the loop to completion and return what was gathered."""

        if self._started:
            raise RuntimeError(f"Retrieval session {self.session_id} has already run")
        self._started = True

        self._events.info(
            "retrieval.started",
            user_input_length=len(self._context.user_input),
            chapters=len(self._context.chapters),
            entries=len(self._context.entries),
            max_iterations=self._max_iterations,
        )
        self._seed()

        termination, error = await self._loop()
        result = self._aggregator.build_result(
            iterations=self._iterations,
            session_id=self.session_id,
            termination=termination,
            error=error,
        )
        self._transition(RetrievalState.TERMINATED)
        self._events.info(
            "retrieval.finished",
            termination=termination.value,
            iterations=result.iterations,
            queried_chapters=list(result.queried_chapters),
            context_length=len(result.context),
        )
        return result

    def _seed(self) -> None:
        variables = build_initial_variables(
            self._context,
            recent_entries=self._config.recent_entries_for_retrieval,
            entries_preview=self._config.max_entries_preview,
        )
        self._conversation.append(Message.system(self._renderer.render_system(self._prompt_context)))
        self._conversation.append(Message.user(self._renderer.render_user(self._prompt_context, variables)))

    async def _loop(self) -> tuple[TerminationReason, str | None]:
        no_tool_call_turns = 0

        while True:
            if self._signal is not None and self._signal.is_cancelled:
                self._events.info("retrieval.cancelled", iterations=self._iterations)
                self._transition(RetrievalState.ABORTING)
                return TerminationReason.CANCELLED, None

            if self._iterations >= self._max_iterations:
                self._events.warning("retrieval.max_iterations", max_iterations=self._max_iterations)
                return TerminationReason.MAX_ITERATIONS, None

            self._transition(RetrievalState.REQUESTING)
            self._iterations += 1
            LOGGER.debug(
                "Retrieval %s iteration %d/%d",
                self.session_id,
                self._iterations,
                self._max_iterations,
            )

            try:
                turn = await self._request_turn()
            except RetrievalCancelled:
                self._events.info("retrieval.cancelled", iterations=self._iterations)
                self._transition(RetrievalState.ABORTING)
                return TerminationReason.CANCELLED, None
            except Exception as exc:
                LOGGER.exception("Retrieval %s turn request failed", self.session_id)
                self._events.error("turn.failed", error=str(exc), error_type=type(exc).__name__)
                self._transition(RetrievalState.ABORTING)
                return TerminationReason.ERROR, str(exc) or type(exc).__name__

            if turn.has_tool_calls:
                no_tool_call_turns = 0
                self._transition(RetrievalState.EXECUTING_TOOLS)
                try:
                    finished = await self._execute_tools(turn)
                except RetrievalCancelled:
                    self._events.info("retrieval.cancelled", iterations=self._iterations)
                    self._transition(RetrievalState.ABORTING)
                    return TerminationReason.CANCELLED, None
                except Exception as exc:
                    LOGGER.exception("Retrieval %s tool execution failed", self.session_id)
                    self._events.error("tool.failed", error=str(exc), error_type=type(exc).__name__)
                    self._transition(RetrievalState.ABORTING)
                    return TerminationReason.ERROR, str(exc) or type(exc).__name__
                if finished:
                    self._transition(RetrievalState.COMPLETING)
                    return TerminationReason.COMPLETED, None
                continue

            no_tool_call_turns += 1
            self._events.info(
                "turn.no_tool_calls",
                count=no_tool_call_turns,
                limit=self._config.no_tool_call_retries,
            )
            if turn.content:
                self._conversation.append(turn.to_message())
            if no_tool_call_turns >= self._config.no_tool_call_retries:
                self._transition(RetrievalState.EXHAUSTED)
                return TerminationReason.EXHAUSTED, None

            self._transition(RetrievalState.RETRYING)
            self._conversation.append(Message.user(self._renderer.render_retry(self._prompt_context)))

    async def _request_turn(self) -> AssistantTurn:
        request = self._provider.generate_with_tools(
            self._conversation.to_chat_params(),
            tools=list(RETRIEVAL_TOOLS),
            tool_choice="auto",
            **self._config.request_options(),
        )
        turn = await await_cancellable(request, self._signal)
        self._events.debug(
            "turn.received",
            iteration=self._iterations,
            has_content=bool(turn.content),
            tool_call_count=len(turn.tool_calls),
            finish_reason=turn.finish_reason,
            has_reasoning=bool(turn.reasoning),
            has_reasoning_details=turn.reasoning_details is not None,
        )
        if turn.reasoning:
            LOGGER.debug("Retrieval %s reasoning: %s", self.session_id, turn.reasoning[:500])
        return turn

    async def _execute_tools(self, turn: AssistantTurn) -> bool:
        """Dispatch every call in order; return whether the session finished."""

        self._conversation.append(turn.to_message())
        finished = False
        for call in turn.tool_calls:
            outcome = await self._dispatcher.dispatch(call)
            if outcome.finished:
                self._aggregator.complete(outcome.summary or "")
                finished = True
            self._conversation.append(Message.tool(outcome.payload, call.id, name=call.name))
        return finished

    def _transition(self, state: RetrievalState) -> None:
        if self._state is RetrievalState.TERMINATED:
            raise RuntimeError("Retrieval session already terminated")
        previous = self._state
        self._state = state
        self._events.debug("state.changed", previous=previous.value, state=state.value)


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------


class AgenticRetrievalService:
    """Entry point for running retrieval sessions against a turn provider.

    Example:
        >>> service = AgenticRetrievalService(client)
        >>> result = await service.run_retrieval(context)
        >>> prompt_block = format_for_prompt_injection(result)
    """

    def __init__(
        self,
        turn_provider: TurnProvider,
        *,
        config: RetrievalConfig | None = None,
        prompt_renderer: PromptRenderer | None = None,
        event_sink: RetrievalEventSink | None = None,
    ) -> None:
        self._provider = turn_provider
        self._config = config or RetrievalConfig()
        self._renderer = prompt_renderer or DefaultPromptRenderer()
        self._event_sink = event_sink

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    def create_session(
        self,
        context: RetrievalContext,
        *,
        on_query_chapter: ChapterQueryFn | None = None,
        on_query_chapters: RangeQueryFn | None = None,
        cancel_signal: SignalLike | None = None,
        mode: str = "adventure",
        pov: str | None = None,
        tense: str | None = None,
        max_iterations: int | None = None,
        session_id: str | None = None,
    ) -> RetrievalSession:
        return RetrievalSession(
            self._provider,
            context,
            config=self._config,
            renderer=self._renderer,
            prompt_context=build_prompt_context(mode, pov, tense),
            on_query_chapter=on_query_chapter,
            on_query_chapters=on_query_chapters,
            cancel_signal=cancel_signal,
            event_sink=self._event_sink,
            session_id=session_id,
            max_iterations=max_iterations,
        )

    async def run_retrieval(
        self,
        context: RetrievalContext,
        *,
        on_query_chapter: ChapterQueryFn | None = None,
        on_query_chapters: RangeQueryFn | None = None,
        cancel_signal: SignalLike | None = None,
        mode: str = "adventure",
        pov: str | None = None,
        tense: str | None = None,
        max_iterations: int | None = None,
    ) -> RetrievalResult:
        """Gather context relevant to ``context.user_input``.

        Args:
            context: Read-only story snapshot and the question to answer.
            on_query_chapter: Optional delegate answering a question about one chapter.
            on_query_chapters: Optional delegate answering a question about a chapter range.
            cancel_signal: Optional signal (or bare :class:`asyncio.Event`) that stops the loop.
            mode: Story mode; picks point-of-view and tense defaults.
            pov: Point of view override.
            tense: Tense override.
            max_iterations: Per-call override of ``config.max_iterations``.

        Returns:
            The retrieval result. Cancellation, provider failures and tool
            errors are reported through ``termination`` rather than raised.
        """

        session = self.create_session(
            context,
            on_query_chapter=on_query_chapter,
            on_query_chapters=on_query_chapters,
            cancel_signal=cancel_signal,
            mode=mode,
            pov=pov,
            tense=tense,
            max_iterations=max_iterations,
        )
        return await session.run()
