"""Tests for retrieval prompt rendering."""

from __future__ import annotations

from lorekeeper.ai.retrieval import prompts
from lorekeeper.ai.retrieval.types import Entry, RetrievalContext, RetrievalResult, StoryEntry, TerminationReason

from tests.helpers import make_context


def test_adventure_mode_defaults_to_second_person_present():
    ctx = prompts.build_prompt_context()

    assert (ctx.pov, ctx.tense) == ("second", "present")


def test_creative_writing_defaults_to_third_person_past():
    ctx = prompts.build_prompt_context("creative-writing")

    assert (ctx.pov, ctx.tense) == ("third", "past")


def test_explicit_pov_and_tense_win_over_mode():
    ctx = prompts.build_prompt_context("creative-writing", pov="first", tense="present")

    assert (ctx.pov, ctx.tense) == ("first", "present")


def test_system_prompt_names_every_tool():
    content = prompts.DefaultPromptRenderer().render_system(prompts.build_prompt_context())

    assert "second person, present tense" in content
    for name in ("list_chapters", "query_chapter", "query_chapters", "list_entries", "finish_retrieval"):
        assert name in content


def test_recent_entries_are_tagged_and_limited():
    context = RetrievalContext(
        user_input="?",
        recent_entries=[
            StoryEntry("narration", "oldest"),
            StoryEntry("user_action", "I open the door."),
            StoryEntry("narration", "It creaks."),
        ],
    )

    assert prompts.format_recent_entries(context, limit=2) == "[ACTION] I open the door.\n\n[NARRATION] It creaks."
    assert prompts.format_recent_entries(context, limit=0) == ""


def test_chapter_list_marks_untitled_chapters():
    listing = prompts.format_chapter_list(make_context(2))

    assert listing.splitlines() == [
        "- Chapter 1: Chapter title 1 (Mira, Guest 1)",
        "- Chapter 2: Untitled (Mira, Guest 2)",
    ]
    assert prompts.format_chapter_list(RetrievalContext(user_input="?")) == "(none)"


def test_entry_list_reports_overflow():
    context = RetrievalContext(
        user_input="?",
        entries=[Entry(id=str(index), name=f"Thing {index}", type="item") for index in range(23)],
    )

    lines = prompts.format_entry_list(context, limit=20).splitlines()

    assert len(lines) == 21
    assert lines[0] == "- Thing 0 (item)"
    assert lines[-1] == "...and 3 more"


def test_user_prompt_carries_story_snapshot():
    variables = prompts.build_initial_variables(make_context(3))
    content = prompts.DefaultPromptRenderer().render_user(prompts.build_prompt_context(), variables)

    assert "Where is the silver key?" in content
    assert "## Available Chapters (3)" in content
    assert "## Lorebook Entries (5)" in content
    assert "- Silver Key (item)" in content


def test_custom_templates_are_used():
    renderer = prompts.DefaultPromptRenderer(retry_template="Use a tool, {protagonist_name}.")

    assert renderer.render_retry(prompts.build_prompt_context()) == "Use a tool, the protagonist."


def test_injection_block_wraps_context():
    result = RetrievalResult(
        context="Mira hid the key.",
        queried_chapters=(2,),
        iterations=2,
        session_id="s",
    )

    assert prompts.format_for_prompt_injection(result) == (
        "\n<retrieved_context>\n## From Earlier in the Story\nMira hid the key.\n</retrieved_context>"
    )


def test_injection_block_is_empty_without_context():
    result = RetrievalResult(
        context="",
        queried_chapters=(),
        iterations=3,
        session_id="s",
        termination=TerminationReason.EXHAUSTED,
    )

    assert prompts.format_for_prompt_injection(result) == ""
