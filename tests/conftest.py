from __future__ import annotations as _annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import pydantic_core
import pytest

from unillm import StreamCallbacks, StreamEvent

__all__ = 'sse_record', 'sse', 'chunked', 'StreamRecorder'


@pytest.fixture
def anyio_backend():
    return 'asyncio'


def sse_record(payload: Any, *, event: str | None = None) -> bytes:
    """Encode one payload as an event stream record; strings are sent verbatim."""
    data = payload if isinstance(payload, str) else pydantic_core.to_json(payload).decode()
    prefix = f'event: {event}\n' if event else ''
    return f'{prefix}data: {data}\n\n'.encode()


def sse(*payloads: Any) -> bytes:
    return b''.join(sse_record(payload) for payload in payloads)


def chunked(body: bytes, size: int) -> Iterable[bytes]:
    return [body[i : i + size] for i in range(0, len(body), size)]


@dataclass
class StreamRecorder:
    """Records everything delivered through a set of stream callbacks."""

    events: list[StreamEvent] = field(default_factory=list)
    errors: list[BaseException] = field(default_factory=list)
    completions: int = 0

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(on_event=self.events.append, on_error=self.errors.append, on_complete=self._complete)

    def _complete(self) -> None:
        self.completions += 1
