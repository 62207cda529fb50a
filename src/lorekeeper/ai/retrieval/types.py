"""Core type definitions for the retrieval loop.

The story snapshot types (chapters, lorebook entries, recent narrative) are
frozen so a single :class:`RetrievalContext` can be shared between concurrent
sessions. Conversation types mirror the OpenAI chat-completions message shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    # Story snapshot
    "ENTRY_TYPES",
    "EntryType",
    "Chapter",
    "Entry",
    "StoryEntry",
    "RetrievalContext",
    # Conversation
    "MessageRole",
    "ToolCall",
    "Message",
    "AssistantTurn",
    # Results
    "TerminationReason",
    "RetrievalResult",
]


# -----------------------------------------------------------------------------
# Story snapshot
# -----------------------------------------------------------------------------

EntryType = Literal["character", "location", "item", "faction", "concept", "event"]
ENTRY_TYPES: tuple[str, ...] = ("character", "location", "item", "faction", "concept", "event")


def _as_tuple(values: Sequence[str] | None) -> tuple[str, ...]:
    if not values:
        return ()
    return tuple(str(value) for value in values)


@dataclass(slots=True, frozen=True)
class Chapter:
    """Summarized chapter of the story so far.

    Attributes:
        number: Chapter number, unique and increasing within a story.
        title: Optional chapter title (empty when untitled).
        summary: Summary text produced when the chapter was closed.
        characters: Character names appearing in the chapter.
        locations: Location names visited in the chapter.
        plot_threads: Plot-thread labels touched by the chapter.
        id: Optional storage identifier, carried for the caller's benefit.
    """

    number: int
    title: str = ""
    summary: str = ""
    characters: tuple[str, ...] = ()
    locations: tuple[str, ...] = ()
    plot_threads: tuple[str, ...] = ()
    id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "characters", _as_tuple(self.characters))
        object.__setattr__(self, "locations", _as_tuple(self.locations))
        object.__setattr__(self, "plot_threads", _as_tuple(self.plot_threads))

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the key names the model sees in tool payloads."""
        return {
            "number": self.number,
            "title": self.title,
            "summary": self.summary,
            "characters": list(self.characters),
            "locations": list(self.locations),
            "plotThreads": list(self.plot_threads),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Chapter:
        return cls(
            number=int(data["number"]),
            title=str(data.get("title") or ""),
            summary=str(data.get("summary") or ""),
            characters=data.get("characters") or (),
            locations=data.get("locations") or (),
            plot_threads=data.get("plotThreads") or data.get("plot_threads") or (),
            id=data.get("id"),
        )


@dataclass(slots=True, frozen=True)
class Entry:
    """Lorebook entry snapshot."""

    id: str
    name: str
    type: str
    description: str = ""
    aliases: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "aliases", _as_tuple(self.aliases))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "aliases": list(self.aliases),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Entry:
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            type=str(data.get("type") or "concept"),
            description=str(data.get("description") or ""),
            aliases=data.get("aliases") or (),
        )


@dataclass(slots=True, frozen=True)
class StoryEntry:
    """One recent narrative entry: a player action or a narration block."""

    type: Literal["user_action", "narration"]
    content: str

    @property
    def is_action(self) -> bool:
        return self.type == "user_action"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StoryEntry:
        kind = "user_action" if data.get("type") == "user_action" else "narration"
        return cls(type=kind, content=str(data.get("content") or ""))


@dataclass(slots=True, frozen=True)
class RetrievalContext:
    """Read-only bundle handed to a retrieval session.

    Attributes:
        user_input: The question or player input that needs context.
        recent_entries: The latest narrative entries, oldest first.
        chapters: Every summarized chapter, in story order.
        entries: Every lorebook entry.
    """

    user_input: str
    recent_entries: tuple[StoryEntry, ...] = ()
    chapters: tuple[Chapter, ...] = ()
    entries: tuple[Entry, ...] = ()

    def __post_init__(self) -> None:
        for name in ("recent_entries", "chapters", "entries"):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))

    def find_chapter(self, number: int) -> Chapter | None:
        for chapter in self.chapters:
            if chapter.number == number:
                return chapter
        return None

    def chapters_between(self, start: int, end: int) -> tuple[Chapter, ...]:
        """Return chapters whose number falls in ``[start, end]``, in story order."""
        return tuple(c for c in self.chapters if start <= c.number <= end)


# -----------------------------------------------------------------------------
# Conversation
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A function call requested by the model.

    Attributes:
        id: Opaque identifier; tool results are correlated by it.
        name: Requested function name (may be outside the catalog).
        arguments: Raw argument text, expected but not guaranteed to be JSON.
    """

    id: str
    name: str
    arguments: str = ""

    def to_chat_param(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> ToolCall:
        function = param.get("function") or {}
        arguments = function.get("arguments")
        return cls(
            id=str(param.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=arguments if isinstance(arguments, str) else "",
        )


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message in the retrieval conversation.

    Attributes:
        role: The role of the message sender.
        content: Text content; assistant messages carrying tool calls may have none.
        tool_calls: Tool calls requested by an assistant message.
        tool_call_id: ID linking a tool result to its call.
        name: Function name on tool messages.
        reasoning: Free-text reasoning trace returned by some providers.
        reasoning_details: Structured reasoning payload, echoed back verbatim.
    """

    role: MessageRole
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    reasoning: str | None = None
    reasoning_details: Any = None

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [call.to_chat_param() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.name is not None and self.role == "tool":
            payload["name"] = self.name
        if self.reasoning:
            payload["reasoning"] = self.reasoning
        if self.reasoning_details is not None:
            payload["reasoning_details"] = self.reasoning_details
        return payload  # type: ignore[return-value]

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls,
        content: str | None,
        tool_calls: Sequence[ToolCall] | None = None,
        *,
        reasoning: str | None = None,
        reasoning_details: Any = None,
    ) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
            reasoning=reasoning,
            reasoning_details=reasoning_details,
        )

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: str | None = None) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)


@dataclass(slots=True, frozen=True)
class AssistantTurn:
    """One response from the turn provider.

    Attributes:
        content: Text content, if any.
        tool_calls: Requested tool calls, in the order the model emitted them.
        reasoning: Reasoning trace, when the provider exposes one.
        reasoning_details: Structured reasoning payload, when present.
        finish_reason: Why the model stopped generating.
    """

    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    reasoning: str | None = None
    reasoning_details: Any = None
    finish_reason: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls or ()))

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def to_message(self) -> Message:
        """Convert to the assistant Message appended to the conversation."""
        return Message.assistant(
            self.content,
            tool_calls=self.tool_calls or None,
            reasoning=self.reasoning,
            reasoning_details=self.reasoning_details,
        )


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


class TerminationReason(str, Enum):
    """How a retrieval session ended."""

    COMPLETED = "completed"
    EXHAUSTED = "exhausted"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class RetrievalResult:
    """Outcome of one retrieval session.

    Attributes:
        context: Synthesized context from ``finish_retrieval`` (empty otherwise).
        queried_chapters: Chapter numbers consulted, unique, first-seen order.
        iterations: Model turns actually requested.
        session_id: Correlation identifier for logs; never persisted.
        termination: Why the loop stopped.
        error: Provider error description when ``termination`` is ``ERROR``.
    """

    context: str
    queried_chapters: tuple[int, ...]
    iterations: int
    session_id: str
    termination: TerminationReason = TerminationReason.COMPLETED
    error: str | None = None

    @property
    def has_context(self) -> bool:
        return bool(self.context)

    def to_dict(self) -> dict[str, Any]:
        return {
            "context": self.context,
            "queried_chapters": list(self.queried_chapters),
            "iterations": self.iterations,
            "session_id": self.session_id,
            "termination": self.termination.value,
            "error": self.error,
        }
