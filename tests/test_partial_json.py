from __future__ import annotations as _annotations

import pytest
from inline_snapshot import snapshot

from unillm._partial_json import (
    Complete,
    Incomplete,
    Invalid,
    PartialJsonResult,
    parse_partial_json,
    preview_partial_json,
)


@pytest.mark.parametrize(
    'text, expected',
    [
        ('{"x":1,"y":2}', Complete({'x': 1, 'y': 2})),
        ('   {"x": 1}', Complete({'x': 1})),
        ('[1, {"b": 2}]', Complete([1, {'b': 2}])),
        ('Here is the JSON: {"a": [1, 2]} hope that helps!', Complete({'a': [1, 2]})),
        ('{"a":1} {"b":2}', Complete({'a': 1})),
        ('{"a": "}{"}', Complete({'a': '}{'})),
        (r'{"a": "say \"}\" ok"}', Complete({'a': 'say "}" ok'})),
        ('{"a": "\\\\"}', Complete({'a': '\\'})),
        ('{"x":1', Incomplete()),
        ('{"a": "hel', Incomplete()),
        ('{"a": "}', Incomplete()),
        ('{"outer": {"inner": 1}', Incomplete()),
        ('[', Incomplete()),
    ],
)
def test_parse_partial_json(text: str, expected: PartialJsonResult):
    assert parse_partial_json(text) == expected


def test_growing_buffer():
    buffer = '{"x":1'
    assert parse_partial_json(buffer) == Incomplete()
    buffer += ',"y":2}'
    assert parse_partial_json(buffer) == Complete({'x': 1, 'y': 2})
    buffer += ' trailing prose'
    assert parse_partial_json(buffer) == Complete({'x': 1, 'y': 2})


def test_no_opening_bracket():
    assert parse_partial_json('no json here') == snapshot(Invalid(reason='no opening bracket found'))
    assert parse_partial_json('') == snapshot(Invalid(reason='no opening bracket found'))


@pytest.mark.parametrize('text', ["{'a': 1}", '[1, 2}', '{"a" 1}', 'use {curly} braces'])
def test_balanced_but_invalid(text: str):
    result = parse_partial_json(text)
    assert isinstance(result, Invalid)
    assert result.reason.startswith('balanced span is not valid JSON')


def test_anchored():
    assert parse_partial_json('  {"a":1}', anchored=True) == Complete({'a': 1})
    assert parse_partial_json('Sure! {"a":1}', anchored=True) == snapshot(
        Invalid(reason="buffer starts with 'S', not an opening bracket")
    )
    assert parse_partial_json('   ', anchored=True) == snapshot(Invalid(reason='buffer is empty'))
    assert parse_partial_json('[{"a": 1}', anchored=True) == Incomplete()


def test_sub_object_of_unfinished_array_is_not_complete_when_anchored():
    assert parse_partial_json('Result: [{"a": 1}, {"b"', anchored=False) == Incomplete()
    assert parse_partial_json('[{"a": 1}, {"b"', anchored=True) == Incomplete()


def test_preview_partial_json():
    assert preview_partial_json('{"name": "Par') == snapshot({'name': 'Par'})
    assert preview_partial_json('Sure: {"a": 1, "b": ') == snapshot({'a': 1})
    assert preview_partial_json('["aa", "bb", "c') == snapshot(['aa', 'bb', 'c'])
    assert preview_partial_json('nothing yet') is None
