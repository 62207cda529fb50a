"""Prompt templates for the retrieval agent.

Templates are plain ``str.format`` strings so callers can swap in their own
wording through a :class:`PromptRenderer` without touching the loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping, Protocol, runtime_checkable

from .types import RetrievalContext, RetrievalResult

__all__ = [
    "StoryMode",
    "PromptContext",
    "PromptRenderer",
    "DefaultPromptRenderer",
    "SYSTEM_TEMPLATE",
    "USER_TEMPLATE",
    "RETRY_TEMPLATE",
    "build_prompt_context",
    "build_initial_variables",
    "format_recent_entries",
    "format_chapter_list",
    "format_entry_list",
    "format_for_prompt_injection",
]

StoryMode = Literal["adventure", "creative-writing"]

DEFAULT_RECENT_ENTRIES = 5
DEFAULT_ENTRIES_PREVIEW = 20


SYSTEM_TEMPLATE = """You are a retrieval agent for an interactive story told in {pov} person, {tense} tense.
Your job is to gather the context from earlier chapters that matters for what happens next to {protagonist_name}.

You have these tools:
- list_chapters: see every summarized chapter with its characters and locations
- query_chapter: ask a focused question about one chapter
- query_chapters: ask a question across up to 3 consecutive chapters
- list_entries: browse lorebook entries, optionally filtered by type
- finish_retrieval: hand back a synthesized summary and stop

Guidelines:
- Only look up chapters that plausibly bear on the current situation.
- Prefer a few precise questions over broad sweeps.
- Call finish_retrieval as soon as you have enough, even if the answer is that nothing earlier is relevant.
- The summary you pass to finish_retrieval is injected into the narrator's prompt, so keep it factual and concise."""


USER_TEMPLATE = """# Current Situation

## Player Input
{user_input}

## Recent Story
{recent_context}

## Available Chapters ({chapters_count})
{chapter_list}

## Lorebook Entries ({entries_count})
{entry_list}

Decide what earlier context is relevant, use the tools to retrieve it, then call finish_retrieval."""


RETRY_TEMPLATE = (
    "You must use one of the available tools. Query the chapters you need, or call "
    "finish_retrieval with a summary of the relevant context (an empty-handed summary is fine)."
)


@dataclass(slots=True, frozen=True)
class PromptContext:
    """Narrative parameters the templates are rendered with.

    Attributes:
        mode: Story mode; drives the point-of-view and tense defaults.
        pov: Narrative point of view (``first``, ``second`` or ``third``).
        tense: Narrative tense (``present`` or ``past``).
        protagonist_name: How the prompts refer to the main character.
    """

    mode: str = "adventure"
    pov: str = "second"
    tense: str = "present"
    protagonist_name: str = "the protagonist"

    def as_variables(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "pov": self.pov,
            "tense": self.tense,
            "protagonist_name": self.protagonist_name,
        }


def build_prompt_context(
    mode: str = "adventure",
    pov: str | None = None,
    tense: str | None = None,
) -> PromptContext:
    """Fill in point of view and tense from the story mode when not given."""

    creative = mode == "creative-writing"
    return PromptContext(
        mode=mode,
        pov=pov or ("third" if creative else "second"),
        tense=tense or ("past" if creative else "present"),
    )


@runtime_checkable
class PromptRenderer(Protocol):
    """Produces the three prompts a retrieval session needs."""

    def render_system(self, ctx: PromptContext) -> str:  # pragma: no cover - protocol stub
        ...

    def render_user(self, ctx: PromptContext, variables: Mapping[str, Any]) -> str:  # pragma: no cover
        ...

    def render_retry(self, ctx: PromptContext) -> str:  # pragma: no cover - protocol stub
        ...


class DefaultPromptRenderer:
    """Render the module-level templates, or caller-supplied replacements."""

    def __init__(
        self,
        *,
        system_template: str = SYSTEM_TEMPLATE,
        user_template: str = USER_TEMPLATE,
        retry_template: str = RETRY_TEMPLATE,
    ) -> None:
        self.system_template = system_template
        self.user_template = user_template
        self.retry_template = retry_template

    def render_system(self, ctx: PromptContext) -> str:
        return self.system_template.format(**ctx.as_variables())

    def render_user(self, ctx: PromptContext, variables: Mapping[str, Any]) -> str:
        merged = ctx.as_variables()
        merged.update(variables)
        return self.user_template.format(**merged)

    def render_retry(self, ctx: PromptContext) -> str:
        return self.retry_template.format(**ctx.as_variables())


# -----------------------------------------------------------------------------
# Initial prompt variables
# -----------------------------------------------------------------------------


def format_recent_entries(context: RetrievalContext, limit: int = DEFAULT_RECENT_ENTRIES) -> str:
    if limit <= 0:
        return ""
    recent = context.recent_entries[-limit:]
    return "\n\n".join(
        f"{'[ACTION]' if entry.is_action else '[NARRATION]'} {entry.content}" for entry in recent
    )


def format_chapter_list(context: RetrievalContext) -> str:
    if not context.chapters:
        return "(none)"
    return "\n".join(
        f"- Chapter {chapter.number}: {chapter.title or 'Untitled'} ({', '.join(chapter.characters)})"
        for chapter in context.chapters
    )


def format_entry_list(context: RetrievalContext, limit: int = DEFAULT_ENTRIES_PREVIEW) -> str:
    if not context.entries:
        return "(none)"
    lines = [f"- {entry.name} ({entry.type})" for entry in context.entries[:limit]]
    overflow = len(context.entries) - limit
    if overflow > 0:
        lines.append(f"...and {overflow} more")
    return "\n".join(lines)


def build_initial_variables(
    context: RetrievalContext,
    *,
    recent_entries: int = DEFAULT_RECENT_ENTRIES,
    entries_preview: int = DEFAULT_ENTRIES_PREVIEW,
) -> dict[str, Any]:
    """Variables for :data:`USER_TEMPLATE` describing the story snapshot."""

    return {
        "user_input": context.user_input,
        "recent_context": format_recent_entries(context, recent_entries),
        "chapters_count": len(context.chapters),
        "chapter_list": format_chapter_list(context),
        "entries_count": len(context.entries),
        "entry_list": format_entry_list(context, entries_preview),
    }


def format_for_prompt_injection(result: RetrievalResult) -> str:
    """Wrap retrieved context for the narrator prompt; empty when there is none."""

    if not result.context:
        return ""
    return (
        "\n<retrieved_context>\n"
        "## From Earlier in the Story\n"
        f"{result.context}\n"
        "</retrieved_context>"
    )
