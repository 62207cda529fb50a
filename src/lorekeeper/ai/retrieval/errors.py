"""Error types for the retrieval loop.

Tool handlers never let failures escape into the session: they raise
:class:`RetrievalToolError` and the dispatcher serializes it into the JSON
payload the model sees on its next turn.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ErrorCode",
    "RetrievalError",
    "RetrievalCancelled",
    "RetrievalToolError",
    "ChapterNotFoundError",
    "EmptyRangeError",
    "UnknownToolError",
    "ToolArgumentError",
    "MissingParameterError",
    "InvalidParameterError",
]


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------


class ErrorCode:
    """Constants for error codes used in tool payloads."""

    CHAPTER_NOT_FOUND = "chapter_not_found"
    EMPTY_RANGE = "empty_range"
    UNKNOWN_TOOL = "unknown_tool"
    MISSING_PARAMETER = "missing_parameter"
    INVALID_PARAMETER = "invalid_parameter"


# -----------------------------------------------------------------------------
# Session-level exceptions
# -----------------------------------------------------------------------------


class RetrievalError(Exception):
    """Base class for retrieval failures."""


class RetrievalCancelled(RetrievalError):
    """Raised when the cancellation signal fires while the loop is suspended."""


# -----------------------------------------------------------------------------
# Tool errors
# -----------------------------------------------------------------------------


@dataclass
class RetrievalToolError(RetrievalError):
    """Base exception for recoverable tool failures.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for the model.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool payloads."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def to_payload(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class ChapterNotFoundError(RetrievalToolError):
    """A single-chapter query named a chapter that does not exist."""

    error_code: str = field(default=ErrorCode.CHAPTER_NOT_FOUND)
    message: str = field(default="Chapter not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Call list_chapters to see the available chapter numbers")

    chapter_number: int | None = field(default=None)

    def __post_init__(self) -> None:
        if self.chapter_number is not None:
            self.message = f"Chapter {self.chapter_number} not found"
            self.details.setdefault("chapter_number", self.chapter_number)
        super().__post_init__()


@dataclass
class EmptyRangeError(RetrievalToolError):
    """A range query matched no known chapters."""

    error_code: str = field(default=ErrorCode.EMPTY_RANGE)
    message: str = field(default="No chapters in specified range")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Call list_chapters to see the available chapter numbers")


@dataclass
class UnknownToolError(RetrievalToolError):
    """The model asked for a function that is not in the catalog."""

    error_code: str = field(default=ErrorCode.UNKNOWN_TOOL)
    message: str = field(default="Unknown tool")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    tool_name: str = field(default="")
    available: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if self.tool_name:
            self.message = f"Unknown tool: {self.tool_name}"
        if self.available and not self.suggestion:
            self.suggestion = "Use one of: " + ", ".join(self.available)
        super().__post_init__()


@dataclass
class ToolArgumentError(RetrievalToolError):
    """Base for argument problems detected inside a tool handler."""

    error_code: str = field(default=ErrorCode.INVALID_PARAMETER)
    message: str = field(default="Invalid tool arguments")


@dataclass
class MissingParameterError(ToolArgumentError):
    """A required argument was absent after healing."""

    error_code: str = field(default=ErrorCode.MISSING_PARAMETER)
    message: str = field(default="Required parameter missing")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    parameter: str = field(default="")

    def __post_init__(self) -> None:
        if self.parameter:
            self.message = f"Missing required parameter: {self.parameter}"
            self.details.setdefault("parameter", self.parameter)
        super().__post_init__()


@dataclass
class InvalidParameterError(ToolArgumentError):
    """An argument was present but could not be used."""

    error_code: str = field(default=ErrorCode.INVALID_PARAMETER)
    message: str = field(default="Invalid parameter value")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    parameter: str = field(default="")
    value: Any = field(default=None)

    def __post_init__(self) -> None:
        if self.parameter:
            self.message = f"Invalid value for parameter {self.parameter}: {self.value!r}"
            self.details.setdefault("parameter", self.parameter)
        super().__post_init__()
