"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from lorekeeper.ai.retrieval.events import InMemoryEventSink
from lorekeeper.ai.retrieval.types import RetrievalContext

from tests.helpers import make_context


@pytest.fixture
def story_context() -> RetrievalContext:
    return make_context()


@pytest.fixture
def event_sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "LOREKEEPER_API_KEY",
        "LOREKEEPER_BASE_URL",
        "LOREKEEPER_MODEL",
        "LOREKEEPER_ORGANIZATION",
        "LOREKEEPER_DEBUG_LOGGING",
        "LOREKEEPER_REQUEST_TIMEOUT",
        "LOREKEEPER_MAX_RETRIES",
        "LOREKEEPER_RETRIEVAL_ENABLED",
        "LOREKEEPER_RETRIEVAL_MODEL",
        "LOREKEEPER_RETRIEVAL_MAX_ITERATIONS",
        "LOREKEEPER_RETRIEVAL_THRESHOLD",
        "LOREKEEPER_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
