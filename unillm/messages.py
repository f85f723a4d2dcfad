"""The canonical event vocabulary that every provider wire format is translated into."""

from __future__ import annotations as _annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Literal, TypeAlias

import pydantic

from . import _utils
from .exceptions import ProtocolViolation
from .usage import NormalizedUsage

FinishReason: TypeAlias = Literal[
    'stop',
    'length',
    'content_filter',
    'tool_calls',
    'error',
    'other',
    'unknown',
]
"""Reason the model finished generating the response.

Provider strings that aren't in a wire format's table map to `'other'`; a missing reason maps to `'unknown'`.
"""

ErrorKind: TypeAlias = Literal['framing', 'record_parse', 'protocol_violation', 'provider']
"""Category of a diagnostic reported in-band as an [`ErrorEvent`][unillm.messages.ErrorEvent]."""


@dataclass(repr=False)
class StreamWarning:
    """A warning about the request, e.g. a setting the provider does not support."""

    type: Literal['unsupported-setting', 'other'] = 'other'
    setting: str | None = None
    message: str | None = None

    __repr__ = _utils.dataclasses_no_defaults_repr

    @classmethod
    def unsupported_setting(cls, setting: str, message: str | None = None) -> StreamWarning:
        return cls(type='unsupported-setting', setting=setting, message=message)


@dataclass(repr=False, kw_only=True)
class TextStartEvent:
    """A text block has opened."""

    id: str
    """Identifier of the block, unique among the blocks currently open."""

    event_kind: Literal['text-start'] = 'text-start'
    """Event type identifier, used as a discriminator."""

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class TextDeltaEvent:
    """A fragment of text for an open text block."""

    id: str
    delta: str
    event_kind: Literal['text-delta'] = 'text-delta'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class TextEndEvent:
    """A text block has closed."""

    id: str
    event_kind: Literal['text-end'] = 'text-end'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ReasoningStartEvent:
    """A reasoning ("thinking") block has opened."""

    id: str
    event_kind: Literal['reasoning-start'] = 'reasoning-start'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ReasoningDeltaEvent:
    """A fragment of reasoning text for an open reasoning block."""

    id: str
    delta: str
    event_kind: Literal['reasoning-delta'] = 'reasoning-delta'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ReasoningEndEvent:
    """A reasoning block has closed."""

    id: str
    event_kind: Literal['reasoning-end'] = 'reasoning-end'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ToolInputStartEvent:
    """The model has started streaming the arguments of a tool call."""

    id: str
    """The tool call ID, shared by the matching delta, end and call events."""

    tool_name: str
    """The name of the tool being called."""

    event_kind: Literal['tool-input-start'] = 'tool-input-start'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ToolInputDeltaEvent:
    """A fragment of a tool call's JSON arguments, exactly as the provider sent it."""

    id: str
    delta: str
    event_kind: Literal['tool-input-delta'] = 'tool-input-delta'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ToolInputEndEvent:
    """The arguments of a tool call are complete."""

    id: str
    event_kind: Literal['tool-input-end'] = 'tool-input-end'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ToolCallEvent:
    """A fully assembled tool call."""

    id: str
    tool_name: str

    input_json: str
    """The complete JSON arguments, as a string."""

    event_kind: Literal['tool-call'] = 'tool-call'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ToolResultEvent:
    """The result of a tool executed by the provider (e.g. a built-in web search)."""

    id: str
    tool_name: str
    result: Any = None
    is_error: bool = False
    event_kind: Literal['tool-result'] = 'tool-result'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class FileEvent:
    """A file generated by the model."""

    media_type: str
    """The IANA media type of the file, e.g. `image/png`."""

    data: str
    """The file content, base64 encoded."""

    event_kind: Literal['file'] = 'file'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class SourceEvent:
    """A source (citation) the model referenced."""

    id: str
    source_type: Literal['url', 'document'] = 'url'
    url: str | None = None
    title: str | None = None
    event_kind: Literal['source'] = 'source'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class StreamStartEvent:
    """The first event of every stream."""

    warnings: list[StreamWarning] = field(default_factory=list)
    event_kind: Literal['stream-start'] = 'stream-start'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ResponseMetadataEvent:
    """Metadata about the response, as soon as the provider reports it."""

    id: str | None = None
    """The provider's response ID."""

    model_id: str | None = None
    """The model that actually served the request."""

    timestamp: datetime | None = None
    """When the provider created the response."""

    event_kind: Literal['response-metadata'] = 'response-metadata'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class FinishEvent:
    """The model has finished; always the last content event of a stream."""

    usage: NormalizedUsage = field(default_factory=NormalizedUsage)
    finish_reason: FinishReason = 'unknown'
    event_kind: Literal['finish'] = 'finish'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class RawEvent:
    """A decoded provider record, emitted only when `include_raw_chunks` is enabled."""

    raw_value: Any
    event_kind: Literal['raw'] = 'raw'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ErrorEvent:
    """A non-fatal problem with the stream; events already delivered remain valid."""

    kind: ErrorKind
    message: str
    event_kind: Literal['error'] = 'error'

    __repr__ = _utils.dataclasses_no_defaults_repr


StreamEvent = Annotated[
    TextStartEvent
    | TextDeltaEvent
    | TextEndEvent
    | ReasoningStartEvent
    | ReasoningDeltaEvent
    | ReasoningEndEvent
    | ToolInputStartEvent
    | ToolInputDeltaEvent
    | ToolInputEndEvent
    | ToolCallEvent
    | ToolResultEvent
    | FileEvent
    | SourceEvent
    | StreamStartEvent
    | ResponseMetadataEvent
    | FinishEvent
    | RawEvent
    | ErrorEvent,
    pydantic.Discriminator('event_kind'),
]
"""Any event in a normalized stream."""

StreamEventTypeAdapter = pydantic.TypeAdapter(StreamEvent, config=pydantic.ConfigDict(defer_build=True))
"""Pydantic [`TypeAdapter`][pydantic.type_adapter.TypeAdapter] for (de)serializing stream events."""

_TEXT_EVENTS = TextStartEvent | TextDeltaEvent | TextEndEvent
_TOOL_EVENTS = ToolInputStartEvent | ToolInputDeltaEvent | ToolInputEndEvent | ToolCallEvent | ToolResultEvent
_LIFECYCLE_EVENTS = StreamStartEvent | FinishEvent | ErrorEvent


def is_text_event(event: StreamEvent) -> bool:
    return isinstance(event, _TEXT_EVENTS)


def is_tool_event(event: StreamEvent) -> bool:
    return isinstance(event, _TOOL_EVENTS)


def is_lifecycle_event(event: StreamEvent) -> bool:
    return isinstance(event, _LIFECYCLE_EVENTS)


_BLOCK_FAMILIES: dict[str, tuple[str, Literal['start', 'delta', 'end']]] = {
    'text-start': ('text', 'start'),
    'text-delta': ('text', 'delta'),
    'text-end': ('text', 'end'),
    'reasoning-start': ('reasoning', 'start'),
    'reasoning-delta': ('reasoning', 'delta'),
    'reasoning-end': ('reasoning', 'end'),
    'tool-input-start': ('tool-input', 'start'),
    'tool-input-delta': ('tool-input', 'delta'),
    'tool-input-end': ('tool-input', 'end'),
}


def check_block_ordering(events: Iterable[StreamEvent]) -> None:
    """Check that a sequence of events is well formed.

    Every `*Delta` must use an ID previously opened by a matching `*Start`, every `*End` must close a block
    that is currently open, a block ID may only be reopened after its `*End`, and `FinishEvent` may occur
    at most once, after which no events may follow.

    Tool input deltas that arrive after their call's arguments already parsed are forwarded as they come,
    so a `ToolInputDeltaEvent` is allowed after the `ToolInputEndEvent` of the same call.

    Raises:
        ProtocolViolation: If the sequence violates any of these rules.
    """
    open_blocks: set[tuple[str, str]] = set()
    opened_blocks: set[tuple[str, str]] = set()
    finished = False
    for position, event in enumerate(events):
        if finished:
            raise ProtocolViolation(f'{event.event_kind!r} event at position {position} follows the finish event')
        if isinstance(event, FinishEvent):
            finished = True
            continue
        block = _BLOCK_FAMILIES.get(event.event_kind)
        if block is None:
            continue
        family, phase = block
        key = family, event.id  # pyright: ignore[reportAttributeAccessIssue]
        if phase == 'start':
            if key in open_blocks:
                raise ProtocolViolation(f'{family} block {key[1]!r} started twice without ending')
            open_blocks.add(key)
            opened_blocks.add(key)
        elif phase == 'delta':
            if key not in opened_blocks:
                raise ProtocolViolation(
                    f'{event.event_kind!r} for {family} block {key[1]!r} which was never started'
                )
            if key not in open_blocks and family != 'tool-input':
                raise ProtocolViolation(f'{event.event_kind!r} for {family} block {key[1]!r} which is not open')
        elif key not in open_blocks:
            raise ProtocolViolation(f'{event.event_kind!r} for {family} block {key[1]!r} which is not open')
        else:
            open_blocks.remove(key)
