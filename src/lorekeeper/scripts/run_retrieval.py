"""CLI harness that runs one agentic retrieval session against a JSON story bundle.

The bundle is a JSON object::

    {
      "user_input": "Where did I leave the silver key?",
      "recent_entries": [{"type": "user_action", "content": "..."}],
      "chapters": [{"number": 1, "title": "...", "summary": "...", "characters": [...]}],
      "entries": [{"id": "e1", "name": "Mira", "type": "character"}],
      "chapter_texts": {"1": "full chapter text, optional"}
    }
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Mapping, Sequence

from lorekeeper.ai.client import AIClient
from lorekeeper.ai.retrieval import (
    AgenticRetrievalService,
    CancellationSignal,
    Chapter,
    ChapterQueryService,
    Entry,
    RetrievalContext,
    RetrievalResult,
    StoryEntry,
    TerminationReason,
    format_for_prompt_injection,
)
from lorekeeper.services.settings import SettingsStore
from lorekeeper.utils.logging import setup_logging

LOGGER = logging.getLogger(__name__)


def load_bundle(path: Path) -> tuple[RetrievalContext, dict[int, str]]:
    """Read a bundle file into a context plus optional full chapter texts."""

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, Mapping):
        raise ValueError(f"{path} does not contain a JSON object")
    try:
        context = RetrievalContext(
            user_input=str(payload.get("user_input") or ""),
            recent_entries=tuple(StoryEntry.from_dict(item) for item in payload.get("recent_entries") or ()),
            chapters=tuple(Chapter.from_dict(item) for item in payload.get("chapters") or ()),
            entries=tuple(Entry.from_dict(item) for item in payload.get("entries") or ()),
        )
        texts = {int(key): str(value) for key, value in (payload.get("chapter_texts") or {}).items()}
    except (KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"{path} is not a valid story bundle: {exc!r}") from exc
    return context, texts


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one agentic retrieval session")
    parser.add_argument("bundle", type=Path, help="Path to the JSON story bundle")
    parser.add_argument("--question", default=None, help="Override the bundle's user_input")
    parser.add_argument("--mode", choices=("adventure", "creative-writing"), default="adventure")
    parser.add_argument("--pov", choices=("first", "second", "third"), default=None)
    parser.add_argument("--tense", choices=("present", "past"), default=None)
    parser.add_argument("--max-iterations", type=int, default=None)
    parser.add_argument("--model", default=None, help="Retrieval model override")
    parser.add_argument("--base-url", default=None, help="OpenAI-compatible endpoint override")
    parser.add_argument("--settings", type=Path, default=None, help="Path to settings.json")
    parser.add_argument(
        "--inject",
        action="store_true",
        help="Print the narrator prompt block instead of the JSON result",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


async def _run(args: argparse.Namespace) -> RetrievalResult:
    store = SettingsStore(args.settings) if args.settings else SettingsStore()
    overrides: dict[str, Any] = {"base_url": args.base_url}
    if args.model:
        overrides["retrieval"] = {"model": args.model}
    settings = store.load(overrides=overrides)

    context, texts = load_bundle(args.bundle)
    if args.question:
        context = RetrievalContext(
            user_input=args.question,
            recent_entries=context.recent_entries,
            chapters=context.chapters,
            entries=context.entries,
        )

    client = AIClient(settings.to_client_settings())
    service = AgenticRetrievalService(client, config=settings.retrieval.to_config())
    delegates: dict[str, Any] = {}
    if texts:

        async def load_text(number: int) -> str:
            return texts.get(number, "")

        query_service = ChapterQueryService(client, load_text, temperature=settings.retrieval.temperature)
        delegates = {
            "on_query_chapter": query_service.answer_chapter,
            "on_query_chapters": query_service.answer_range,
        }

    cancel = CancellationSignal()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    except (NotImplementedError, RuntimeError):  # pragma: no cover - Windows event loops
        LOGGER.debug("SIGINT handler unavailable; Ctrl+C will abort without a partial result")

    try:
        return await service.run_retrieval(
            context,
            cancel_signal=cancel,
            mode=args.mode,
            pov=args.pov,
            tense=args.tense,
            max_iterations=args.max_iterations,
            **delegates,
        )
    finally:
        await client.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING, console=args.verbose)

    try:
        result = asyncio.run(_run(args))
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if args.inject:
        sys.stdout.write(format_for_prompt_injection(result) + "\n")
    else:
        json.dump(result.to_dict(), sys.stdout, indent=2)
        sys.stdout.write("\n")
    return 1 if result.termination is TerminationReason.ERROR else 0


if __name__ == "__main__":
    raise SystemExit(main())
