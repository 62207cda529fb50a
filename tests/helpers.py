"""Shared test helpers and stub classes.

Scripted turn providers and story fixtures used across the retrieval tests.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping, Sequence

from lorekeeper.ai.retrieval.types import (
    AssistantTurn,
    Chapter,
    Entry,
    RetrievalContext,
    StoryEntry,
    ToolCall,
)


def call(name: str, arguments: Mapping[str, Any] | str | None = None, *, call_id: str | None = None) -> ToolCall:
    """Build a tool call; mappings are JSON-encoded, strings are passed through raw."""

    if arguments is None:
        raw = "{}"
    elif isinstance(arguments, str):
        raw = arguments
    else:
        raw = json.dumps(arguments)
    return ToolCall(id=call_id or f"call_{name}", name=name, arguments=raw)


def tool_turn(*calls: ToolCall, content: str | None = None, reasoning: str | None = None) -> AssistantTurn:
    return AssistantTurn(content=content, tool_calls=calls, reasoning=reasoning, finish_reason="tool_calls")


def text_turn(content: str | None = "Thinking about it...") -> AssistantTurn:
    return AssistantTurn(content=content, finish_reason="stop")


class ScriptedTurnProvider:
    """Turn provider that replays scripted turns and records every request.

    Items in ``turns`` may be :class:`AssistantTurn` instances or exceptions to
    raise. Once the script runs out the provider keeps answering with plain
    text turns.
    """

    def __init__(self, turns: Sequence[AssistantTurn | BaseException] = ()) -> None:
        self.turns = list(turns)
        self.calls: list[dict[str, Any]] = []

    async def generate_with_tools(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]],
        tool_choice: str = "auto",
        **options: Any,
    ) -> AssistantTurn:
        self.calls.append(
            {
                "messages": [dict(message) for message in messages],
                "tools": list(tools),
                "tool_choice": tool_choice,
                **options,
            }
        )
        if not self.turns:
            return text_turn()
        item = self.turns.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class BlockingTurnProvider:
    """Turn provider whose requests never complete until cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def generate_with_tools(self, messages: Sequence[Mapping[str, Any]], **_: Any) -> AssistantTurn:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        raise AssertionError("unreachable")  # pragma: no cover


def make_chapters(count: int) -> tuple[Chapter, ...]:
    return tuple(
        Chapter(
            number=number,
            title=f"Chapter title {number}" if number % 2 else "",
            summary=f"Summary of chapter {number}.",
            characters=("Mira", f"Guest {number}"),
            locations=(f"Place {number}",),
            plot_threads=("the silver key",) if number == 2 else (),
        )
        for number in range(1, count + 1)
    )


def make_entries() -> tuple[Entry, ...]:
    return (
        Entry(id="e1", name="Mira", type="character", description="The protagonist's sister."),
        Entry(id="e2", name="Harbor Town", type="location", description="A fishing town."),
        Entry(id="e3", name="Silver Key", type="item", aliases=("the key",)),
        Entry(id="e4", name="Old Lighthouse", type="location", description="Abandoned."),
        Entry(id="e5", name="Tide Guild", type="faction"),
    )


def make_context(chapter_count: int = 8, *, user_input: str = "Where is the silver key?") -> RetrievalContext:
    return RetrievalContext(
        user_input=user_input,
        recent_entries=(
            StoryEntry(type="user_action", content="I search the lighthouse."),
            StoryEntry(type="narration", content="Dust swirls in the lantern room."),
        ),
        chapters=make_chapters(chapter_count),
        entries=make_entries(),
    )
