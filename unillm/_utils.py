from __future__ import annotations as _annotations

import uuid
from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from typing import Any


def number_to_datetime(x: int | float) -> datetime | None:
    """Convert a unix timestamp in seconds (as providers send in `created`) to an aware datetime.

    Returns `None` for timestamps outside the range `datetime` can represent.
    """
    try:
        return datetime.fromtimestamp(x, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def as_object(value: Any) -> dict[str, Any]:
    """`value` if it decoded from a JSON object, otherwise an empty dict."""
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def as_int(value: Any, default: int) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else default


def generate_tool_call_id(prefix: str = 'call') -> str:
    """Generate a tool call id for providers that stream tool calls without one.

    Ensure that the tool call id is unique.
    """
    return f'{prefix}_{uuid.uuid4().hex}'


def dataclasses_no_defaults_repr(self: Any) -> str:
    """Exclude fields with values equal to the field default."""
    assert is_dataclass(self)
    kv_pairs = (
        f'{f.name}={getattr(self, f.name)!r}' for f in fields(self) if f.repr and getattr(self, f.name) != f.default
    )
    return f'{self.__class__.__qualname__}({", ".join(kv_pairs)})'
