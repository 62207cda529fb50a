"""Tool Dispatcher for retrieval sessions.

Routes each model tool call to its handler, heals the argument text, and
always produces a JSON payload for the conversation. Recoverable failures
(unknown tool, bad arguments, missing chapters) become structured error
payloads; only cancellation escapes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from .aggregator import RetrievalAggregator
from .cancellation import CancellationSignal, await_cancellable
from .catalog import RetrievalTool, tool_names
from .errors import (
    ChapterNotFoundError,
    EmptyRangeError,
    InvalidParameterError,
    MissingParameterError,
    RetrievalCancelled,
    RetrievalToolError,
    UnknownToolError,
)
from .events import SessionEvents
from .json_healing import heal_json
from .types import ENTRY_TYPES, RetrievalContext, ToolCall

__all__ = [
    "ChapterQueryFn",
    "RangeQueryFn",
    "DispatchOutcome",
    "RetrievalToolDispatcher",
]

LOGGER = logging.getLogger(__name__)

ChapterQueryFn = Callable[[int, str], Awaitable[str]]
RangeQueryFn = Callable[[int, int, str], Awaitable[str]]

DEFAULT_MAX_CHAPTERS_PER_RANGE = 3


# -----------------------------------------------------------------------------
# Dispatch Result
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class DispatchOutcome:
    """Result of dispatching one tool call.

    Attributes:
        call_id: ID of the originating tool call.
        name: Function name as requested by the model.
        tool: Catalog member, or ``None`` for unknown names.
        payload: JSON text appended to the conversation as the tool message.
        is_error: Whether ``payload`` is an error payload.
        finished: Whether this call completed the session.
        summary: Summary passed to ``finish_retrieval`` when ``finished``.
    """

    call_id: str
    name: str
    tool: RetrievalTool | None
    payload: str
    is_error: bool = False
    finished: bool = False
    summary: str | None = None


@dataclass(slots=True, frozen=True)
class _HandlerResult:
    payload: Any
    finished: bool = False
    summary: str | None = None


_Handler = Callable[[Mapping[str, Any]], Awaitable[_HandlerResult]]


# -----------------------------------------------------------------------------
# Argument coercion
# -----------------------------------------------------------------------------


def _require(args: Mapping[str, Any], key: str) -> Any:
    value = args.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingParameterError(parameter=key)
    return value


def _require_int(args: Mapping[str, Any], key: str) -> int:
    value = _require(args, key)
    if isinstance(value, bool):
        raise InvalidParameterError(parameter=key, value=value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise InvalidParameterError(parameter=key, value=value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            raise InvalidParameterError(parameter=key, value=value) from None
        if number.is_integer():
            return int(number)
    raise InvalidParameterError(parameter=key, value=value)


def _require_str(args: Mapping[str, Any], key: str) -> str:
    value = _require(args, key)
    if isinstance(value, (dict, list)):
        raise InvalidParameterError(parameter=key, value=value)
    return str(value)


# -----------------------------------------------------------------------------
# Tool Dispatcher
# -----------------------------------------------------------------------------


class RetrievalToolDispatcher:
    """Executes catalog tools against a read-only :class:`RetrievalContext`.

    One dispatcher serves one session: it writes consulted chapters into the
    session's :class:`RetrievalAggregator` and awaits the optional answering
    delegates through the session's cancellation signal.
    """

    def __init__(
        self,
        context: RetrievalContext,
        aggregator: RetrievalAggregator,
        *,
        on_query_chapter: ChapterQueryFn | None = None,
        on_query_chapters: RangeQueryFn | None = None,
        cancel_signal: CancellationSignal | None = None,
        events: SessionEvents | None = None,
        max_chapters_per_range: int = DEFAULT_MAX_CHAPTERS_PER_RANGE,
    ) -> None:
        if max_chapters_per_range < 1:
            raise ValueError("max_chapters_per_range must be at least 1")
        self._context = context
        self._aggregator = aggregator
        self._on_query_chapter = on_query_chapter
        self._on_query_chapters = on_query_chapters
        self._cancel_signal = cancel_signal
        self._events = events or SessionEvents(None, "")
        self._max_chapters_per_range = max_chapters_per_range
        self._handlers: dict[RetrievalTool, _Handler] = {
            RetrievalTool.LIST_CHAPTERS: self._list_chapters,
            RetrievalTool.QUERY_CHAPTER: self._query_chapter,
            RetrievalTool.QUERY_CHAPTERS: self._query_chapters,
            RetrievalTool.LIST_ENTRIES: self._list_entries,
            RetrievalTool.FINISH_RETRIEVAL: self._finish_retrieval,
        }
        missing = [tool.value for tool in RetrievalTool if tool not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for: {', '.join(missing)}")

    @property
    def aggregator(self) -> RetrievalAggregator:
        return self._aggregator

    async def dispatch(self, call: ToolCall) -> DispatchOutcome:
        """Execute ``call`` and return the payload for its tool message.

        Raises:
            RetrievalCancelled: If the cancellation signal fires while a
                delegate is running.
        """

        tool = RetrievalTool.parse(call.name)
        if tool is None:
            error = UnknownToolError(tool_name=call.name, available=tool_names())
            self._events.warning("tool.unknown", call_id=call.id, tool=call.name)
            return self._error_outcome(call, None, error)

        arguments = self._parse_arguments(call)
        self._events.debug("tool.dispatched", call_id=call.id, tool=tool.value, arguments=arguments)

        try:
            result = await self._handlers[tool](arguments)
        except RetrievalToolError as error:
            self._events.info(
                "tool.error",
                call_id=call.id,
                tool=tool.value,
                error_code=error.error_code,
                message=error.message,
            )
            return self._error_outcome(call, tool, error)

        return DispatchOutcome(
            call_id=call.id,
            name=call.name,
            tool=tool,
            payload=json.dumps(result.payload, ensure_ascii=False),
            finished=result.finished,
            summary=result.summary,
        )

    def _parse_arguments(self, call: ToolCall) -> dict[str, Any]:
        healed = heal_json(call.arguments)
        if not healed.ok:
            self._events.warning(
                "json.decode_failed",
                call_id=call.id,
                tool=call.name,
                preview=call.arguments[:200],
            )
        elif healed.repaired:
            self._events.info("tool.arguments_healed", call_id=call.id, tool=call.name)
        return healed.value

    @staticmethod
    def _error_outcome(
        call: ToolCall,
        tool: RetrievalTool | None,
        error: RetrievalToolError,
    ) -> DispatchOutcome:
        return DispatchOutcome(
            call_id=call.id,
            name=call.name,
            tool=tool,
            payload=error.to_payload(),
            is_error=True,
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _list_chapters(self, args: Mapping[str, Any]) -> _HandlerResult:
        return _HandlerResult([chapter.to_dict() for chapter in self._context.chapters])

    async def _query_chapter(self, args: Mapping[str, Any]) -> _HandlerResult:
        number = _require_int(args, "chapter_number")
        question = _require_str(args, "question")

        chapter = self._context.find_chapter(number)
        if chapter is None:
            raise ChapterNotFoundError(chapter_number=number)
        if self._aggregator.record_chapter(number):
            self._events.debug("chapter.recorded", chapter=number)

        if self._on_query_chapter is not None:
            answer = await self._call_delegate(
                "query_chapter",
                self._on_query_chapter(number, question),
            )
            if answer is not None:
                return _HandlerResult({"chapter": number, "question": question, "answer": answer})

        return _HandlerResult(
            {
                "chapter": number,
                "question": question,
                "answer": f"Based on chapter summary: {chapter.summary}",
                "characters": list(chapter.characters),
                "locations": list(chapter.locations),
            }
        )

    async def _query_chapters(self, args: Mapping[str, Any]) -> _HandlerResult:
        start = _require_int(args, "start_chapter")
        requested_end = _require_int(args, "end_chapter")
        question = _require_str(args, "question")
        end = min(requested_end, start + self._max_chapters_per_range - 1)

        chapters = self._context.chapters_between(start, end)
        if not chapters:
            raise EmptyRangeError(details={"start": start, "end": end})
        recorded = self._aggregator.record_chapters(chapter.number for chapter in chapters)
        if recorded:
            self._events.debug("chapter.recorded", chapters=recorded)

        span = {"start": start, "end": end}
        if self._on_query_chapters is not None:
            answer = await self._call_delegate(
                "query_chapters",
                self._on_query_chapters(start, end, question),
            )
            if answer is not None:
                return _HandlerResult({"range": span, "question": question, "answer": answer})

        combined = "\n\n".join(f"Chapter {chapter.number}: {chapter.summary}" for chapter in chapters)
        return _HandlerResult(
            {
                "range": span,
                "question": question,
                "answer": f"Based on chapters {start}-{end}:\n{combined}",
            }
        )

    async def _list_entries(self, args: Mapping[str, Any]) -> _HandlerResult:
        type_filter = args.get("type")
        if type_filter in (None, ""):
            entries = self._context.entries
        elif isinstance(type_filter, str) and type_filter in ENTRY_TYPES:
            entries = tuple(entry for entry in self._context.entries if entry.type == type_filter)
        else:
            raise InvalidParameterError(
                parameter="type",
                value=type_filter,
                suggestion="Use one of: " + ", ".join(ENTRY_TYPES),
            )
        return _HandlerResult([entry.to_dict() for entry in entries])

    async def _finish_retrieval(self, args: Mapping[str, Any]) -> _HandlerResult:
        summary = args.get("summary")
        if summary is None:
            raise MissingParameterError(parameter="summary")
        if not isinstance(summary, str):
            raise InvalidParameterError(parameter="summary", value=summary)
        return _HandlerResult(
            {"success": True, "message": "Retrieval complete", "summary_length": len(summary)},
            finished=True,
            summary=summary,
        )

    async def _call_delegate(self, label: str, pending: Awaitable[str]) -> str | None:
        """Await a delegate; ``None`` means fall back to the stored summaries."""

        try:
            answer = await await_cancellable(pending, self._cancel_signal)
        except RetrievalCancelled:
            raise
        except Exception as exc:
            LOGGER.warning("%s delegate failed, falling back to summaries: %s", label, exc)
            self._events.warning("delegate.failed", delegate=label, error=str(exc))
            return None
        return answer if isinstance(answer, str) else str(answer)
