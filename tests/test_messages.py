from __future__ import annotations as _annotations

from datetime import datetime, timezone

import pytest
from inline_snapshot import snapshot

from unillm.exceptions import ProtocolViolation, UnexpectedModelBehavior
from unillm.messages import (
    ErrorEvent,
    FinishEvent,
    ReasoningDeltaEvent,
    ReasoningEndEvent,
    ReasoningStartEvent,
    ResponseMetadataEvent,
    SourceEvent,
    StreamEvent,
    StreamEventTypeAdapter,
    StreamStartEvent,
    StreamWarning,
    TextDeltaEvent,
    TextEndEvent,
    TextStartEvent,
    ToolCallEvent,
    ToolInputDeltaEvent,
    ToolInputEndEvent,
    ToolInputStartEvent,
    ToolResultEvent,
    check_block_ordering,
    is_lifecycle_event,
    is_text_event,
    is_tool_event,
)
from unillm.usage import InputTokens, NormalizedUsage, OutputTokens


def test_predicates():
    assert is_text_event(TextDeltaEvent(id='text-0', delta='hi'))
    assert not is_text_event(ReasoningDeltaEvent(id='reasoning-0', delta='hmm'))
    assert is_tool_event(ToolInputStartEvent(id='c', tool_name='f'))
    assert is_tool_event(ToolResultEvent(id='c', tool_name='f', result={'ok': True}))
    assert not is_tool_event(TextStartEvent(id='text-0'))
    assert is_lifecycle_event(StreamStartEvent())
    assert is_lifecycle_event(FinishEvent())
    assert is_lifecycle_event(ErrorEvent(kind='framing', message='bad line'))
    assert not is_lifecycle_event(ResponseMetadataEvent(id='resp-1'))


def test_repr_omits_defaults():
    assert repr(TextDeltaEvent(id='text-0', delta='hi')) == snapshot("TextDeltaEvent(id='text-0', delta='hi')")
    assert repr(StreamWarning.unsupported_setting('top_k')) == snapshot(
        "StreamWarning(type='unsupported-setting', setting='top_k')"
    )


def test_type_adapter_discriminates_on_event_kind():
    assert StreamEventTypeAdapter.validate_python(
        {'event_kind': 'text-delta', 'id': 'text-0', 'delta': 'hi'}
    ) == TextDeltaEvent(id='text-0', delta='hi')
    assert StreamEventTypeAdapter.validate_python(
        {'event_kind': 'source', 'id': 'source-0', 'url': 'https://example.com'}
    ) == SourceEvent(id='source-0', url='https://example.com')


def test_type_adapter_serializes_events():
    event = FinishEvent(
        usage=NormalizedUsage(input_tokens=InputTokens(total=3), output_tokens=OutputTokens(total=2)),
        finish_reason='stop',
    )
    assert StreamEventTypeAdapter.dump_python(event) == snapshot(
        {
            'usage': {
                'input_tokens': {'total': 3, 'cache_read': None, 'cache_write': None},
                'output_tokens': {'total': 2, 'reasoning': None},
            },
            'finish_reason': 'stop',
            'event_kind': 'finish',
        }
    )
    metadata = ResponseMetadataEvent(id='resp-1', timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc))
    assert StreamEventTypeAdapter.validate_json(StreamEventTypeAdapter.dump_json(metadata)) == metadata


def test_well_formed_sequence():
    check_block_ordering(
        [
            StreamStartEvent(),
            ReasoningStartEvent(id='reasoning-0'),
            ReasoningDeltaEvent(id='reasoning-0', delta='hmm'),
            ReasoningEndEvent(id='reasoning-0'),
            TextStartEvent(id='text-0'),
            TextDeltaEvent(id='text-0', delta='hi'),
            TextEndEvent(id='text-0'),
            TextStartEvent(id='text-0'),
            TextEndEvent(id='text-0'),
            ToolInputStartEvent(id='c', tool_name='f'),
            ToolInputDeltaEvent(id='c', delta='{}'),
            ToolInputEndEvent(id='c'),
            ToolCallEvent(id='c', tool_name='f', input_json='{}'),
            ToolInputDeltaEvent(id='c', delta=' '),
            FinishEvent(),
        ]
    )


@pytest.mark.parametrize(
    'events, message',
    [
        ([TextDeltaEvent(id='text-0', delta='hi')], "'text-delta' for text block 'text-0' which was never started"),
        ([TextEndEvent(id='text-0')], "'text-end' for text block 'text-0' which is not open"),
        (
            [TextStartEvent(id='text-0'), TextStartEvent(id='text-0')],
            "text block 'text-0' started twice without ending",
        ),
        (
            [TextStartEvent(id='text-0'), TextEndEvent(id='text-0'), TextEndEvent(id='text-0')],
            "'text-end' for text block 'text-0' which is not open",
        ),
        (
            [ReasoningStartEvent(id='x'), TextDeltaEvent(id='x', delta='hi')],
            "'text-delta' for text block 'x' which was never started",
        ),
        (
            [TextStartEvent(id='text-0'), TextEndEvent(id='text-0'), TextDeltaEvent(id='text-0', delta='late')],
            "'text-delta' for text block 'text-0' which is not open",
        ),
        (
            [
                ReasoningStartEvent(id='reasoning-0'),
                ReasoningEndEvent(id='reasoning-0'),
                ReasoningDeltaEvent(id='reasoning-0', delta='late'),
            ],
            "'reasoning-delta' for reasoning block 'reasoning-0' which is not open",
        ),
        ([FinishEvent(), FinishEvent()], "'finish' event at position 1 follows the finish event"),
        ([FinishEvent(), TextStartEvent(id='text-0')], "'text-start' event at position 1 follows the finish event"),
    ],
)
def test_malformed_sequences(events: list[StreamEvent], message: str):
    with pytest.raises(ProtocolViolation) as exc_info:
        check_block_ordering(events)
    assert str(exc_info.value) == message
    assert isinstance(exc_info.value, UnexpectedModelBehavior)
