"""Best-effort JSON recovery for model-authored tool arguments.

Models routinely emit argument payloads that are almost JSON: trailing commas,
single-quoted strings, bare keys, raw newlines inside strings, markdown fences,
or output cut off mid-object. :func:`heal_json` tries progressively more
aggressive repairs and fails closed to an empty object; nothing here raises.
"""

from __future__ import annotations

import ast
import json
import logging
import re
import string
from dataclasses import dataclass, field
from typing import Any, Iterator

__all__ = ["HealedJson", "heal_json", "parse_json_with_healing"]

LOGGER = logging.getLogger(__name__)

_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})
_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(?P<body>.*?)(?:```|$)", re.DOTALL)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_IDENT_START = frozenset(string.ascii_letters + "_$")
_IDENT_CHARS = _IDENT_START | frozenset(string.digits + "-")
_JSON_LITERALS = frozenset({"true", "false", "null"})
_FOREIGN_LITERALS = {"True": "true", "False": "false", "None": "null", "undefined": "null"}
_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\b": "\\b", "\f": "\\f"}
_MAX_TRUNCATION_ATTEMPTS = 8


@dataclass(slots=True, frozen=True)
class HealedJson:
    """Outcome of a healing parse.

    Attributes:
        value: The recovered object (empty when nothing could be recovered).
        ok: Whether an object was recovered from the input.
        repaired: Whether recovery needed more than a strict ``json.loads``.
    """

    value: dict[str, Any] = field(default_factory=dict)
    ok: bool = True
    repaired: bool = False


def parse_json_with_healing(text: Any) -> dict[str, Any]:
    """Return the JSON object in ``text``, healing it when needed, or ``{}``."""

    return heal_json(text).value


def heal_json(text: Any) -> HealedJson:
    """Parse ``text`` as a JSON object, repairing common malformations."""

    if not isinstance(text, str) or not text.strip():
        return HealedJson()

    stripped = text.strip()
    strict = _loads_object(stripped)
    if strict is not None:
        return HealedJson(value=strict)

    candidate = _extract_object(_strip_fences(stripped.translate(_SMART_QUOTES)))
    if candidate is None:
        LOGGER.debug("No JSON object found in %d-char payload", len(text))
        return HealedJson(ok=False)

    for attempt in _repair_candidates(candidate):
        parsed = _loads_object(attempt, strict=False)
        if parsed is not None:
            return HealedJson(value=parsed, repaired=True)

    literal = _literal_object(candidate)
    if literal is not None:
        return HealedJson(value=literal, repaired=True)

    LOGGER.debug("Unable to heal %d-char JSON payload", len(text))
    return HealedJson(ok=False, repaired=True)


def _loads_object(text: str, *, strict: bool = True) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text, strict=strict)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _literal_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = ast.literal_eval(text)
    except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(key): value for key, value in parsed.items()}


def _strip_fences(text: str) -> str:
    if "```" not in text:
        return text
    match = _FENCE_RE.search(text)
    if match is None:
        return text
    return match.group("body").strip()


def _extract_object(text: str) -> str | None:
    start = text.find("{")
    if start == -1:
        return None
    return text[start:]


# -----------------------------------------------------------------------------
# Repair scanner
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _ScanState:
    out: list[str] = field(default_factory=list)
    stack: list[str] = field(default_factory=list)
    cuts: list[tuple[int, tuple[str, ...]]] = field(default_factory=list)


def _repair_candidates(candidate: str) -> Iterator[str]:
    state = _scan(candidate)
    yield _close(state.out, state.stack)
    # Truncated output: back off to each earlier top-level separator in turn.
    for position, stack in list(reversed(state.cuts))[:_MAX_TRUNCATION_ATTEMPTS]:
        yield _close(state.out[:position], list(stack))


def _scan(text: str) -> _ScanState:
    state = _ScanState()
    out = state.out
    stack = state.stack
    in_string = False
    quote = '"'
    escaped = False
    index = 0
    length = len(text)

    while index < length:
        char = text[index]

        if in_string:
            if escaped:
                escaped = False
                if char == "'":
                    out[-1] = "'"
                else:
                    out.append(char)
            elif char == "\\":
                out.append(char)
                escaped = True
            elif char == quote:
                out.append('"')
                in_string = False
            elif char == '"':
                out.append('\\"')
            elif char in _CONTROL_ESCAPES:
                out.append(_CONTROL_ESCAPES[char])
            elif ord(char) < 0x20:
                out.append(f"\\u{ord(char):04x}")
            else:
                out.append(char)
            index += 1
            continue

        if char in "\"'":
            in_string = True
            quote = char
            out.append('"')
            index += 1
            continue

        if char in "{[":
            stack.append("}" if char == "{" else "]")
            out.append(char)
            index += 1
            continue

        if char in "}]":
            if not stack:
                break
            _drop_trailing_comma(out)
            out.append(stack.pop())
            index += 1
            if not stack:
                break
            continue

        if char == ",":
            state.cuts.append((len(out), tuple(stack)))
            out.append(char)
            index += 1
            continue

        number = _NUMBER_RE.match(text, index) if char == "-" or char.isdigit() else None
        if number is not None:
            out.append(number.group())
            index = number.end()
            continue

        if char in _IDENT_START:
            end = index
            while end < length and text[end] in _IDENT_CHARS:
                end += 1
            word = text[index:end]
            if _followed_by_colon(text, end):
                out.append(json.dumps(word))
            elif word in _JSON_LITERALS:
                out.append(word)
            elif word in _FOREIGN_LITERALS:
                out.append(_FOREIGN_LITERALS[word])
            else:
                out.append(json.dumps(word))
            index = end
            continue

        out.append(char)
        index += 1

    if in_string:
        if escaped:
            out.pop()
        out.append('"')
    return state


def _followed_by_colon(text: str, position: int) -> bool:
    while position < len(text) and text[position].isspace():
        position += 1
    return position < len(text) and text[position] == ":"


def _drop_trailing_comma(out: list[str]) -> None:
    position = len(out) - 1
    while position >= 0 and out[position].isspace():
        position -= 1
    if position >= 0 and out[position] == ",":
        del out[position]


def _close(out: list[str], stack: list[str]) -> str:
    text = "".join(out).rstrip()
    while text.endswith(","):
        text = text[:-1].rstrip()
    if text.endswith(":"):
        text += " null"
    return text + "".join(reversed(stack))
