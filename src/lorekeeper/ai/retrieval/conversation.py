"""Append-only message log for one retrieval session."""

from __future__ import annotations

from collections import deque
from typing import Iterator, Sequence

from openai.types.chat import ChatCompletionMessageParam

from .types import Message, ToolCall

__all__ = ["Conversation", "ConversationError"]


class ConversationError(ValueError):
    """Raised when an append would break tool-call correlation."""


class Conversation:
    """Ordered message history sent to the model on every turn.

    Every assistant message that carries tool calls must be followed by exactly
    one tool message per call, in call order, before anything else is appended.
    Messages are never removed or reordered.
    """

    def __init__(self, messages: Sequence[Message] = ()) -> None:
        self._messages: list[Message] = []
        self._pending: deque[ToolCall] = deque()
        for message in messages:
            self.append(message)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def append(self, message: Message) -> None:
        if message.role == "tool":
            self._accept_tool_result(message)
        elif self._pending:
            raise ConversationError(
                f"Cannot append {message.role} message while tool results are pending: "
                + ", ".join(call.id for call in self._pending)
            )
        self._messages.append(message)
        if message.role == "assistant" and message.tool_calls:
            self._pending.extend(message.tool_calls)

    def _accept_tool_result(self, message: Message) -> None:
        if not self._pending:
            raise ConversationError(f"Unexpected tool result for call {message.tool_call_id!r}")
        expected = self._pending[0]
        if message.tool_call_id != expected.id:
            raise ConversationError(
                f"Tool result for {message.tool_call_id!r} arrived before result for {expected.id!r}"
            )
        self._pending.popleft()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def pending_tool_calls(self) -> tuple[ToolCall, ...]:
        return tuple(self._pending)

    @property
    def has_pending_tool_calls(self) -> bool:
        return bool(self._pending)

    def to_chat_params(self) -> list[ChatCompletionMessageParam]:
        return [message.to_chat_param() for message in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]
