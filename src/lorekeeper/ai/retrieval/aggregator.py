"""Accumulates what a retrieval session learned."""

from __future__ import annotations

from typing import Iterable

from .types import RetrievalResult, TerminationReason

__all__ = ["RetrievalAggregator"]


class RetrievalAggregator:
    """Consulted chapters (unique, first-seen order) and the final summary."""

    def __init__(self) -> None:
        self._chapters: dict[int, None] = {}
        self._context = ""
        self._complete = False

    def record_chapter(self, number: int) -> bool:
        """Record ``number`` as consulted; return ``False`` if already present."""
        if number in self._chapters:
            return False
        self._chapters[number] = None
        return True

    def record_chapters(self, numbers: Iterable[int]) -> list[int]:
        """Record several chapters, returning the ones that were new."""
        return [number for number in numbers if self.record_chapter(number)]

    def complete(self, summary: str) -> None:
        self._context = summary
        self._complete = True

    @property
    def queried_chapters(self) -> tuple[int, ...]:
        return tuple(self._chapters)

    @property
    def context(self) -> str:
        return self._context

    @property
    def is_complete(self) -> bool:
        return self._complete

    def build_result(
        self,
        *,
        iterations: int,
        session_id: str,
        termination: TerminationReason,
        error: str | None = None,
    ) -> RetrievalResult:
        return RetrievalResult(
            context=self._context if self._complete else "",
            queried_chapters=self.queried_chapters,
            iterations=iterations,
            session_id=session_id,
            termination=termination,
            error=error,
        )
