"""Unit tests for :mod:`lorekeeper.ai.retrieval.events`."""

from __future__ import annotations

import logging

import pytest

from lorekeeper.ai.retrieval.events import InMemoryEventSink, LoggingEventSink, SessionEvents


class TestInMemoryEventSink:
    """Tests for the ring-buffer sink."""

    def test_events_are_recorded_in_order(self) -> None:
        sink = InMemoryEventSink()
        sink.emit("a", logging.INFO, x=1)
        sink.emit("b", logging.DEBUG)

        assert sink.names() == ["a", "b"]
        assert sink.find("a")[0].fields == {"x": 1}
        assert len(sink) == 2

    def test_capacity_drops_oldest(self) -> None:
        sink = InMemoryEventSink(capacity=10)
        for index in range(15):
            sink.emit(f"e{index}", logging.INFO)

        assert sink.names()[0] == "e5"
        assert [event.name for event in sink.tail(2)] == ["e13", "e14"]


class TestSessionEvents:
    """Tests for session-bound emission."""

    def test_session_id_is_attached(self) -> None:
        sink = InMemoryEventSink()
        events = SessionEvents(sink, "abc")

        events.warning("tool.error", tool="query_chapter")

        event = sink.tail()[0]
        assert event.session_id == "abc"
        assert event.level == logging.WARNING
        assert event.fields["tool"] == "query_chapter"

    def test_failing_sink_never_raises(self) -> None:
        class BrokenSink:
            def emit(self, event, level, /, **fields):
                raise RuntimeError("disk full")

        SessionEvents(BrokenSink(), "abc").error("turn.failed")

    def test_default_sink_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("lorekeeper.test.events")
        events = SessionEvents(LoggingEventSink(logger), "sess-1")

        with caplog.at_level(logging.INFO, logger="lorekeeper.test.events"):
            events.info("retrieval.started", chapters=3)

        record = caplog.records[-1]
        assert record.getMessage() == "[sess-1] retrieval.started chapters=3"
        assert record.session_id == "sess-1"
        assert record.retrieval_event == "retrieval.started"

    def test_logging_sink_skips_disabled_levels(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("lorekeeper.test.events.quiet")
        events = SessionEvents(LoggingEventSink(logger), "sess-2")

        with caplog.at_level(logging.WARNING, logger="lorekeeper.test.events.quiet"):
            events.debug("state.changed", state="requesting")

        assert not caplog.records
