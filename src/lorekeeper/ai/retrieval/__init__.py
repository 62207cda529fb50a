"""Agentic retrieval: a bounded tool-calling loop over earlier chapters.

Public entry point::

    service = AgenticRetrievalService(client)
    result = await service.run_retrieval(context)
    block = format_for_prompt_injection(result)
"""

from .aggregator import RetrievalAggregator
from .cancellation import CancellationSignal, await_cancellable
from .catalog import CATALOG_VERSION, RETRIEVAL_TOOLS, TOOL_SPECS, RetrievalTool, ToolSpec, tool_names
from .chapter_query import ChapterQueryService
from .controller import (
    AgenticRetrievalService,
    RetrievalConfig,
    RetrievalSession,
    RetrievalState,
    TurnProvider,
)
from .conversation import Conversation, ConversationError
from .dispatcher import DispatchOutcome, RetrievalToolDispatcher
from .errors import ErrorCode, RetrievalCancelled, RetrievalError, RetrievalToolError
from .events import InMemoryEventSink, LoggingEventSink, RetrievalEventSink, SessionEvents
from .json_healing import heal_json, parse_json_with_healing
from .prompts import DefaultPromptRenderer, PromptContext, PromptRenderer, format_for_prompt_injection
from .types import (
    AssistantTurn,
    Chapter,
    Entry,
    Message,
    RetrievalContext,
    RetrievalResult,
    StoryEntry,
    TerminationReason,
    ToolCall,
)

__all__ = [
    "AgenticRetrievalService",
    "AssistantTurn",
    "CATALOG_VERSION",
    "CancellationSignal",
    "Chapter",
    "ChapterQueryService",
    "Conversation",
    "ConversationError",
    "DefaultPromptRenderer",
    "DispatchOutcome",
    "Entry",
    "ErrorCode",
    "InMemoryEventSink",
    "LoggingEventSink",
    "Message",
    "PromptContext",
    "PromptRenderer",
    "RETRIEVAL_TOOLS",
    "RetrievalAggregator",
    "RetrievalCancelled",
    "RetrievalConfig",
    "RetrievalContext",
    "RetrievalError",
    "RetrievalEventSink",
    "RetrievalResult",
    "RetrievalSession",
    "RetrievalState",
    "RetrievalTool",
    "RetrievalToolDispatcher",
    "RetrievalToolError",
    "SessionEvents",
    "StoryEntry",
    "TOOL_SPECS",
    "TerminationReason",
    "ToolCall",
    "ToolSpec",
    "TurnProvider",
    "await_cancellable",
    "format_for_prompt_injection",
    "heal_json",
    "parse_json_with_healing",
    "tool_names",
]
