"""Decodes a `text/event-stream` body, delivered as arbitrarily split byte chunks, into discrete records.

Chunk boundaries are not aligned with line or record boundaries, so any trailing partial line is carried
over and prepended to the next chunk before scanning again. A record is only emitted once the blank line
terminating it has been seen, or at the end of the stream if what remains is valid JSON.
"""

from __future__ import annotations as _annotations

import codecs
import logging
import re
from dataclasses import dataclass, field

import pydantic_core

from .exceptions import StreamBufferOverflow

__all__ = 'ServerSentEvent', 'StreamDone', 'FramingDiagnostic', 'DecodedItem', 'EventStreamDecoder'

_logger = logging.getLogger(__name__)

_LINE_END = re.compile(r'\r\n|\r|\n')
DONE_PAYLOAD = '[DONE]'


@dataclass
class ServerSentEvent:
    """One complete record from the event stream."""

    data: str
    """The record payload; multiple `data:` lines are joined with newlines."""

    event: str | None = None
    """The value of the record's `event:` field, if any."""

    id: str | None = None
    """The last event ID seen on the stream when this record was dispatched."""


@dataclass
class StreamDone:
    """Marker for a `data: [DONE]` record, which ends the stream normally."""


@dataclass
class FramingDiagnostic:
    """A piece of the stream that couldn't be framed into a record and was skipped."""

    message: str


DecodedItem = ServerSentEvent | StreamDone | FramingDiagnostic


@dataclass
class EventStreamDecoder:
    """Incremental event stream decoder for a single stream.

    Feed it chunks in order with [`feed`][unillm._sse.EventStreamDecoder.feed], then call
    [`close`][unillm._sse.EventStreamDecoder.close] once the transport signals the end of the body.
    """

    max_buffer_size: int | None = None
    """Maximum number of characters held between chunks (carry-over line plus undispatched data)."""

    _decoder: codecs.IncrementalDecoder = field(init=False, repr=False)
    _carry_over: str = field(default='', init=False, repr=False)
    _data_lines: list[str] = field(default_factory=list, init=False, repr=False)
    _has_data: bool = field(default=False, init=False, repr=False)
    _event_type: str | None = field(default=None, init=False, repr=False)
    _last_event_id: str | None = field(default=None, init=False, repr=False)
    _finished: bool = field(default=False, init=False, repr=False)

    def __post_init__(self):
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')

    @property
    def finished(self) -> bool:
        """Whether `[DONE]` has been seen or the decoder has been closed; further input is ignored."""
        return self._finished

    @property
    def last_event_id(self) -> str | None:
        return self._last_event_id

    def reset(self) -> None:
        """Discard all buffered state so the decoder can be used for a new stream."""
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self._carry_over = ''
        self._data_lines = []
        self._has_data = False
        self._event_type = None
        self._last_event_id = None
        self._finished = False

    def feed(self, chunk: bytes) -> list[DecodedItem]:
        """Decode the next chunk of the body, returning every record it completes.

        Raises:
            StreamBufferOverflow: If more than `max_buffer_size` characters would be held until the next chunk.
        """
        if self._finished:
            return []
        self._carry_over += self._decoder.decode(chunk)
        items = self._drain_lines(final=False)
        self._check_buffer_size()
        return items

    def close(self) -> list[DecodedItem]:
        """Signal the end of the body and flush whatever is left in the carry-over buffer."""
        if self._finished:
            return []
        self._carry_over += self._decoder.decode(b'', final=True)
        items = self._drain_lines(final=True)
        if self._finished:
            return items

        remainder, self._carry_over = self._carry_over, ''
        if remainder:
            field_name = remainder.partition(':')[0]
            if field_name in ('data', 'event', 'id', 'retry') or remainder.startswith(':'):
                items.extend(self._process_line(remainder))
            else:
                # a bare payload without a field name, e.g. a truncated body from a misbehaving proxy
                self._has_data = True
                self._data_lines.append(remainder)

        if self._has_data:
            data = self._take_data()
            if data == DONE_PAYLOAD:
                items.append(StreamDone())
            elif _is_json(data):
                items.append(ServerSentEvent(data=data, event=self._event_type, id=self._last_event_id))
            else:
                message = f'Discarding incomplete record at end of stream: {_truncate(data)}'
                _logger.warning(message)
                items.append(FramingDiagnostic(message))
        self._event_type = None
        self._finished = True
        return items

    def _drain_lines(self, *, final: bool) -> list[DecodedItem]:
        items: list[DecodedItem] = []
        buffer = self._carry_over
        start = 0
        while not self._finished:
            match = _LINE_END.search(buffer, start)
            if match is None:
                break
            if not final and match.group() == '\r' and match.end() == len(buffer):
                # the `\n` of a `\r\n` pair may arrive with the next chunk
                break
            line = buffer[start : match.start()]
            start = match.end()
            items.extend(self._process_line(line))
        self._carry_over = '' if self._finished else buffer[start:]
        return items

    def _process_line(self, line: str) -> list[DecodedItem]:
        if not line:
            return self._dispatch()
        if line.startswith(':'):
            return []

        field_name, _, value = line.partition(':')
        if value.startswith(' '):
            value = value[1:]

        if field_name == 'data':
            self._has_data = True
            self._data_lines.append(value)
        elif field_name == 'event':
            self._event_type = value
        elif field_name == 'id':
            if '\0' not in value:
                self._last_event_id = value
        elif field_name == 'retry':
            pass
        else:
            message = f'Skipping unrecognized event stream line: {_truncate(line)}'
            _logger.warning(message)
            return [FramingDiagnostic(message)]
        return []

    def _dispatch(self) -> list[DecodedItem]:
        event_type, self._event_type = self._event_type, None
        if not self._has_data:
            return []
        data = self._take_data()
        if data == DONE_PAYLOAD:
            self._finished = True
            return [StreamDone()]
        return [ServerSentEvent(data=data, event=event_type, id=self._last_event_id)]

    def _take_data(self) -> str:
        data = '\n'.join(self._data_lines)
        self._data_lines = []
        self._has_data = False
        return data

    def _check_buffer_size(self) -> None:
        if self.max_buffer_size is None:
            return
        held = len(self._carry_over) + sum(len(line) for line in self._data_lines)
        if held > self.max_buffer_size:
            raise StreamBufferOverflow(
                f'Event stream buffer holds {held} characters, exceeding the limit of {self.max_buffer_size}'
            )


def _is_json(data: str) -> bool:
    try:
        pydantic_core.from_json(data)
    except ValueError:
        return False
    return True


def _truncate(text: str, limit: int = 80) -> str:
    return repr(text if len(text) <= limit else text[:limit] + '...')
