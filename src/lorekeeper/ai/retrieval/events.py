"""Structured, session-scoped event logging for the retrieval loop."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Mapping, MutableMapping, Protocol, runtime_checkable

__all__ = [
    "RetrievalEvent",
    "RetrievalEventSink",
    "LoggingEventSink",
    "InMemoryEventSink",
    "SessionEvents",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RetrievalEvent:
    """One emitted event.

    Attributes:
        name: Dotted event name, e.g. ``tool.dispatched``.
        level: Standard :mod:`logging` level.
        fields: Structured payload, always including ``session_id``.
    """

    name: str
    level: int
    fields: Mapping[str, Any] = field(default_factory=dict)

    @property
    def session_id(self) -> str | None:
        value = self.fields.get("session_id")
        return str(value) if value is not None else None


@runtime_checkable
class RetrievalEventSink(Protocol):
    """Destination for retrieval events."""

    def emit(self, event: str, level: int, /, **fields: Any) -> None:  # pragma: no cover - protocol stub
        ...


class _SessionAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        session_id = extra.get("session_id")
        if session_id:
            return f"[{session_id}] {msg}", kwargs
        return msg, kwargs


class LoggingEventSink:
    """Forward events to :mod:`logging` with the session id attached."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def emit(self, event: str, level: int, /, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        session_id = fields.pop("session_id", None)
        adapter = _SessionAdapter(self._logger, {"session_id": session_id})
        details = " ".join(f"{key}={value!r}" for key, value in fields.items())
        adapter.log(
            level,
            "%s %s",
            event,
            details,
            extra={"retrieval_event": event, "retrieval_fields": fields},
        )


class InMemoryEventSink:
    """Ring-buffer sink for local inspection and tests."""

    def __init__(self, capacity: int = 500) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[RetrievalEvent] = deque(maxlen=self._capacity)
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def emit(self, event: str, level: int, /, **fields: Any) -> None:
        with self._lock:
            self._buffer.append(RetrievalEvent(name=event, level=level, fields=dict(fields)))

    def tail(self, limit: int | None = None) -> list[RetrievalEvent]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def names(self) -> list[str]:
        return [event.name for event in self.tail()]

    def find(self, name: str) -> list[RetrievalEvent]:
        return [event for event in self.tail() if event.name == name]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


class SessionEvents:
    """Bind an event sink to one session id."""

    __slots__ = ("_sink", "session_id")

    def __init__(self, sink: RetrievalEventSink | None, session_id: str) -> None:
        self._sink = sink if sink is not None else LoggingEventSink()
        self.session_id = session_id

    def emit(self, event: str, level: int = logging.DEBUG, **fields: Any) -> None:
        fields["session_id"] = self.session_id
        try:
            self._sink.emit(event, level, **fields)
        except Exception:  # pragma: no cover - sinks must never break the loop
            LOGGER.debug("Event sink failed for %s", event, exc_info=True)

    def debug(self, event: str, **fields: Any) -> None:
        self.emit(event, logging.DEBUG, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.emit(event, logging.INFO, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.emit(event, logging.WARNING, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.emit(event, logging.ERROR, **fields)
