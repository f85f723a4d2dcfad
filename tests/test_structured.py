from __future__ import annotations as _annotations

from typing import Any

import pytest
from inline_snapshot import snapshot
from pydantic import BaseModel

from unillm import ErrorEvent, FinishEvent, TextDeltaEvent, TextStartEvent, run_stream
from unillm.structured import (
    ObjectErrorPart,
    ObjectFinishPart,
    ObjectStreamAccumulator,
    ObjectStreamPart,
    ObjectUpdatePart,
    PartialTextPart,
    object_stream_callbacks,
)
from unillm.usage import InputTokens, NormalizedUsage, OutputTokens

from .conftest import StreamRecorder, sse


class City(BaseModel):
    name: str
    population: int


def text_parts(accumulator: ObjectStreamAccumulator[Any], *deltas: str) -> list[ObjectStreamPart]:
    parts: list[ObjectStreamPart] = []
    parts.extend(accumulator.handle_event(TextStartEvent(id='text-0')))
    for delta in deltas:
        parts.extend(accumulator.handle_event(TextDeltaEvent(id='text-0', delta=delta)))
    return parts


def test_progressive_updates():
    accumulator = ObjectStreamAccumulator[object]()
    parts = text_parts(accumulator, '{"name": "Par', 'is", ', '"population": 2100000}')
    parts.extend(accumulator.handle_event(FinishEvent(finish_reason='stop')))
    assert parts == snapshot(
        [
            PartialTextPart(text='{"name": "Par'),
            ObjectUpdatePart(partial_object={'name': 'Par'}),
            PartialTextPart(text='is", '),
            ObjectUpdatePart(partial_object={'name': 'Paris'}),
            PartialTextPart(text='"population": 2100000}'),
            ObjectUpdatePart(partial_object={'name': 'Paris', 'population': 2100000}),
            ObjectFinishPart(object={'name': 'Paris', 'population': 2100000}, finish_reason='stop'),
        ]
    )
    assert accumulator.raw_text == '{"name": "Paris", "population": 2100000}'
    assert accumulator.object == {'name': 'Paris', 'population': 2100000}


def test_unchanged_value_is_not_repeated():
    accumulator = ObjectStreamAccumulator[object]()
    parts = text_parts(accumulator, '{"a": 1', ' ')
    assert parts == snapshot(
        [
            PartialTextPart(text='{"a": 1'),
            ObjectUpdatePart(partial_object={'a': 1}),
            PartialTextPart(text=' '),
        ]
    )


def test_json_inside_prose():
    accumulator = ObjectStreamAccumulator[object]()
    text_parts(accumulator, 'Here you go:\n```json\n', '{"ok": true}', '\n```')
    [part] = accumulator.handle_event(FinishEvent(finish_reason='stop'))
    assert part == ObjectFinishPart(object={'ok': True}, finish_reason='stop')


def test_output_type_validation():
    accumulator = ObjectStreamAccumulator(output_type=City)
    text_parts(accumulator, '{"name": "Paris", "population": "2100000"}')
    usage = NormalizedUsage(input_tokens=InputTokens(total=12), output_tokens=OutputTokens(total=9))
    [part] = accumulator.handle_event(FinishEvent(usage=usage, finish_reason='stop'))
    assert part == ObjectFinishPart(object=City(name='Paris', population=2100000), usage=usage, finish_reason='stop')
    assert accumulator.object == City(name='Paris', population=2100000)


def test_output_type_validation_failure():
    accumulator = ObjectStreamAccumulator(output_type=City)
    text_parts(accumulator, '{"name": "Paris"}')
    [part] = accumulator.handle_event(FinishEvent(finish_reason='stop'))
    assert isinstance(part, ObjectErrorPart)
    assert part.message.startswith('Model output failed validation: 1 validation error for City\npopulation')
    assert accumulator.object is None


@pytest.mark.parametrize(
    'deltas, message',
    [
        (['{"name": "Par'], 'Stream finished before the JSON output was complete'),
        (['Sorry, I ', 'cannot help with that.'], 'Model output contains no JSON value: no opening bracket found'),
    ],
)
def test_finish_without_object(deltas: list[str], message: str):
    accumulator = ObjectStreamAccumulator[object]()
    text_parts(accumulator, *deltas)
    assert list(accumulator.handle_event(FinishEvent())) == [ObjectErrorPart(message=message)]


def test_provider_error_is_forwarded():
    accumulator = ObjectStreamAccumulator[object]()
    assert list(accumulator.handle_event(ErrorEvent(kind='provider', message='Overloaded'))) == [
        ObjectErrorPart(message='Overloaded')
    ]
    assert list(accumulator.handle_event(ErrorEvent(kind='framing', message='bad line'))) == []


def test_object_stream_callbacks():
    body = sse(
        {'choices': [{'delta': {'content': '{"name": "Pa'}}]},
        {'choices': [{'delta': {'content': 'ris", "population": 2100000}'}}]},
        {'choices': [{'finish_reason': 'stop'}], 'usage': {'prompt_tokens': 20, 'completion_tokens': 11}},
    )
    recorder = StreamRecorder()
    parts: list[ObjectStreamPart] = []
    callbacks = object_stream_callbacks(
        parts.append, output_type=City, on_error=recorder.errors.append, on_complete=recorder.callbacks().on_complete
    )
    run_stream([body, b'data: [DONE]\n\n'], provider='openai', callbacks=callbacks)
    assert parts == snapshot(
        [
            PartialTextPart(text='{"name": "Pa'),
            ObjectUpdatePart(partial_object={'name': 'Pa'}),
            PartialTextPart(text='ris", "population": 2100000}'),
            ObjectUpdatePart(partial_object={'name': 'Paris', 'population': 2100000}),
            ObjectFinishPart(
                object=City(name='Paris', population=2100000),
                usage=NormalizedUsage(input_tokens=InputTokens(total=20), output_tokens=OutputTokens(total=11)),
                finish_reason='stop',
            ),
        ]
    )
    assert recorder.errors == []
    assert recorder.completions == 1
