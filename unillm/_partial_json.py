"""Best-effort extraction of a JSON value from a text buffer that is still growing.

Model output requested as JSON is streamed as ordinary text deltas, and may be wrapped in prose
("Here is the JSON: {...}") or cut off mid-token. [`parse_partial_json`][unillm._partial_json.parse_partial_json]
finds the first bracketed span and reports whether it is complete, still open, or unusable.
"""

from __future__ import annotations as _annotations

from dataclasses import dataclass
from typing import Any, TypeAlias

import pydantic_core

__all__ = 'Complete', 'Incomplete', 'Invalid', 'PartialJsonResult', 'parse_partial_json', 'preview_partial_json'

_OPENERS = '{['
_CLOSERS = '}]'


@dataclass(frozen=True)
class Complete:
    """A balanced span was found and parsed."""

    value: Any


@dataclass(frozen=True)
class Incomplete:
    """The buffer ends inside an open container or string; more data is expected."""


@dataclass(frozen=True)
class Invalid:
    """No usable JSON value could be extracted."""

    reason: str


PartialJsonResult: TypeAlias = Complete | Incomplete | Invalid


def _find_opener(text: str, *, anchored: bool) -> int | Invalid:
    if anchored:
        stripped = text.lstrip()
        if not stripped:
            return Invalid('buffer is empty')
        if stripped[0] not in _OPENERS:
            return Invalid(f'buffer starts with {stripped[0]!r}, not an opening bracket')
        return len(text) - len(stripped)

    positions = [pos for pos in (text.find(opener) for opener in _OPENERS) if pos != -1]
    if not positions:
        return Invalid('no opening bracket found')
    return min(positions)


def parse_partial_json(text: str, *, anchored: bool = False) -> PartialJsonResult:
    """Extract the first complete JSON object or array from `text`.

    Prose before the first `{` or `[` and anything after its matching closing bracket is ignored.
    Brackets inside string literals, including escaped quotes, don't count towards nesting. Pass
    `anchored=True` to require that the value starts at the first non-whitespace character.

    Never raises: a balanced span that isn't valid JSON (e.g. `{'a': 1}` or `[1, 2}`) is reported
    as [`Invalid`][unillm._partial_json.Invalid].
    """
    start = _find_opener(text, anchored=anchored)
    if isinstance(start, Invalid):
        return start

    depth = 0
    in_string = False
    escaped = False
    end: int | None = None
    for position in range(start, len(text)):
        char = text[position]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth -= 1
            if depth == 0:
                end = position
                break

    if end is None:
        return Incomplete()

    try:
        value = pydantic_core.from_json(text[start : end + 1])
    except ValueError as e:
        return Invalid(f'balanced span is not valid JSON: {e}')
    return Complete(value)


def preview_partial_json(text: str) -> Any | None:
    """Parse whatever prefix of the first JSON value in `text` is available, for live previews.

    Unterminated strings are kept as they are so far; incomplete keys and values are dropped.
    Returns `None` if there is no opening bracket yet or the prefix can't be parsed.
    """
    start = _find_opener(text, anchored=False)
    if isinstance(start, Invalid):
        return None
    try:
        return pydantic_core.from_json(text[start:], allow_partial='trailing-strings')
    except ValueError:
        return None
