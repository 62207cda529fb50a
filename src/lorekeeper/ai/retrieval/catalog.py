"""Tool catalog exposed to the retrieval model.

The catalog is the complete capability surface of a retrieval session: the
dispatcher rejects any function name that is not a :class:`RetrievalTool`.
Bump :data:`CATALOG_VERSION` whenever a schema below changes shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, cast

from openai.types.chat import ChatCompletionToolParam

from .types import ENTRY_TYPES

__all__ = [
    "CATALOG_VERSION",
    "RetrievalTool",
    "ToolSpec",
    "TOOL_SPECS",
    "RETRIEVAL_TOOLS",
    "tool_names",
]

CATALOG_VERSION = "1"


class RetrievalTool(str, Enum):
    """Function names the retrieval model may call."""

    LIST_CHAPTERS = "list_chapters"
    QUERY_CHAPTER = "query_chapter"
    QUERY_CHAPTERS = "query_chapters"
    LIST_ENTRIES = "list_entries"
    FINISH_RETRIEVAL = "finish_retrieval"

    @classmethod
    def parse(cls, name: str | None) -> RetrievalTool | None:
        """Return the member named ``name`` or ``None`` for anything else."""
        if not name:
            return None
        try:
            return cls(name.strip())
        except ValueError:
            return None


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Function-calling metadata for one catalog entry.

    Attributes:
        tool: Catalog member this spec describes.
        description: Description sent to the model.
        parameters: JSON Schema for the tool arguments.
    """

    tool: RetrievalTool
    description: str
    parameters: Mapping[str, Any]

    @property
    def name(self) -> str:
        return self.tool.value

    def as_openai_tool(self) -> ChatCompletionToolParam:
        """Return an OpenAI-compatible tool spec for the turn provider."""
        return cast(
            ChatCompletionToolParam,
            {
                "type": "function",
                "function": {
                    "name": self.name,
                    "description": self.description,
                    "parameters": dict(self.parameters),
                },
            },
        )


TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        tool=RetrievalTool.LIST_CHAPTERS,
        description="List all available chapters with their summaries, characters, and locations",
        parameters={"type": "object", "properties": {}},
    ),
    ToolSpec(
        tool=RetrievalTool.QUERY_CHAPTER,
        description="Ask a specific question about a single chapter to get relevant information",
        parameters={
            "type": "object",
            "properties": {
                "chapter_number": {
                    "type": "number",
                    "description": "The chapter number to query",
                },
                "question": {
                    "type": "string",
                    "description": "The specific question to answer about this chapter",
                },
            },
            "required": ["chapter_number", "question"],
        },
    ),
    ToolSpec(
        tool=RetrievalTool.QUERY_CHAPTERS,
        description="Ask a question across a range of chapters (max 3 per query) for broader information",
        parameters={
            "type": "object",
            "properties": {
                "start_chapter": {
                    "type": "number",
                    "description": "First chapter in the range",
                },
                "end_chapter": {
                    "type": "number",
                    "description": "Last chapter in the range",
                },
                "question": {
                    "type": "string",
                    "description": "The question to answer",
                },
            },
            "required": ["start_chapter", "end_chapter", "question"],
        },
    ),
    ToolSpec(
        tool=RetrievalTool.LIST_ENTRIES,
        description="List lorebook entries for cross-referencing with story context",
        parameters={
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "description": "Optional filter by entry type",
                    "enum": list(ENTRY_TYPES),
                },
            },
        },
    ),
    ToolSpec(
        tool=RetrievalTool.FINISH_RETRIEVAL,
        description="Signal that retrieval is complete and provide synthesized context",
        parameters={
            "type": "object",
            "properties": {
                "summary": {
                    "type": "string",
                    "description": (
                        "Synthesized context from retrieved information that is relevant "
                        "to the current situation"
                    ),
                },
            },
            "required": ["summary"],
        },
    ),
)

RETRIEVAL_TOOLS: tuple[ChatCompletionToolParam, ...] = tuple(spec.as_openai_tool() for spec in TOOL_SPECS)


def tool_names() -> tuple[str, ...]:
    """Names in catalog order."""
    return tuple(spec.name for spec in TOOL_SPECS)
