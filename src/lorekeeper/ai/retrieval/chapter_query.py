"""Model-backed answering delegates for ``query_chapter`` and ``query_chapters``.

Chapter text lives outside this package, so the service is handed an async
loader. Its two bound methods match the delegate signatures the dispatcher
expects and can be passed straight to
:meth:`AgenticRetrievalService.run_retrieval`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from .errors import RetrievalError
from .types import Message

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .controller import TurnProvider

__all__ = ["ChapterTextLoader", "ChapterQueryService", "CHAPTER_QUERY_SYSTEM_PROMPT"]

LOGGER = logging.getLogger(__name__)

ChapterTextLoader = Callable[[int], Awaitable[str]]

CHAPTER_QUERY_SYSTEM_PROMPT = (
    "You answer questions about chapters of an ongoing story. Use only the chapter text "
    "you are given. Answer in a few sentences; if the text does not contain the answer, "
    "say so plainly."
)


class ChapterQueryService:
    """Answer focused questions about stored chapters with a single model turn."""

    def __init__(
        self,
        turn_provider: TurnProvider,
        chapter_text_loader: ChapterTextLoader,
        *,
        temperature: float = 0.3,
        max_tokens: int | None = None,
        system_prompt: str = CHAPTER_QUERY_SYSTEM_PROMPT,
    ) -> None:
        self._provider = turn_provider
        self._load = chapter_text_loader
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._system_prompt = system_prompt

    async def answer_chapter(self, chapter_number: int, question: str) -> str:
        text = await self._load(chapter_number)
        body = f"## Chapter {chapter_number}\n{text}"
        return await self._ask(body, question)

    async def answer_range(self, start_chapter: int, end_chapter: int, question: str) -> str:
        sections = []
        for number in range(start_chapter, end_chapter + 1):
            text = await self._load(number)
            if text:
                sections.append(f"## Chapter {number}\n{text}")
        if not sections:
            raise RetrievalError(f"No chapter text available for {start_chapter}-{end_chapter}")
        return await self._ask("\n\n".join(sections), question)

    async def _ask(self, body: str, question: str) -> str:
        messages = [
            Message.system(self._system_prompt).to_chat_param(),
            Message.user(f"{body}\n\n# Question\n{question}").to_chat_param(),
        ]
        options: dict[str, object] = {"temperature": self._temperature}
        if self._max_tokens is not None:
            options["max_tokens"] = self._max_tokens
        turn = await self._provider.generate_with_tools(messages, tools=[], tool_choice="none", **options)
        answer = (turn.content or "").strip()
        if not answer:
            raise RetrievalError("Chapter query returned no answer")
        LOGGER.debug("Chapter query answered (%d chars)", len(answer))
        return answer
