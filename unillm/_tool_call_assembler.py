"""Reassembles tool calls whose names and JSON arguments arrive split across many stream records.

Providers address the fragments of one logical tool call by an integer `index`, and may interleave
fragments for several calls. The `ToolCallAssembler` keeps one `ToolCallFragment` per index for the
lifetime of a single stream, and turns fragments into `ToolInput*` events as they arrive.
"""

from __future__ import annotations as _annotations

import logging
from collections.abc import Generator
from dataclasses import dataclass, field

import pydantic_core

from ._utils import generate_tool_call_id as _generate_tool_call_id
from .messages import (
    ErrorEvent,
    StreamEvent,
    ToolCallEvent,
    ToolInputDeltaEvent,
    ToolInputEndEvent,
    ToolInputStartEvent,
)

__all__ = 'ToolCallFragment', 'ToolCallAssembler'

_logger = logging.getLogger(__name__)


@dataclass
class ToolCallFragment:
    """Accumulated state of one in-flight tool call."""

    index: int
    """The provider's index for this call."""

    id: str | None = None
    """The tool call ID, from the provider or generated when the call starts."""

    name: str | None = None
    argument_buffer: str = ''
    """Concatenation of all argument fragments received so far."""

    started: bool = False
    """Whether `ToolInputStartEvent` has been emitted."""

    finalized: bool = False
    """Whether `ToolInputEndEvent` has been emitted."""


@dataclass
class ToolCallAssembler:
    """Per-stream tool call state, keyed by provider index."""

    tool_call_id_prefix: str = 'call'
    """Prefix for IDs generated for calls the provider streams without one."""

    _fragments: dict[int, ToolCallFragment] = field(default_factory=dict, init=False)

    @property
    def has_tool_calls(self) -> bool:
        """Whether any tool call has been started on this stream."""
        return any(fragment.started for fragment in self._fragments.values())

    def get(self, index: int) -> ToolCallFragment | None:
        return self._fragments.get(index)

    def handle_fragment(
        self,
        index: int,
        *,
        tool_call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> Generator[StreamEvent, None, None]:
        """Apply one fragment for the call at `index`.

        Yields `ToolInputStartEvent` the first time a name is known for the index, a `ToolInputDeltaEvent` for
        every non-empty argument fragment, and `ToolInputEndEvent` plus `ToolCallEvent` once the accumulated
        arguments parse as a complete JSON value. Argument text received before the name is held back and
        delivered as a single delta right after the start event.
        """
        fragment = self._fragments.get(index)
        if fragment is None:
            fragment = self._fragments[index] = ToolCallFragment(index=index)

        if tool_call_id and fragment.id is None:
            fragment.id = tool_call_id
        if name and fragment.name is None:
            fragment.name = name

        if not fragment.started and fragment.name is not None:
            if fragment.id is None:
                fragment.id = _generate_tool_call_id(self.tool_call_id_prefix)
            fragment.started = True
            yield ToolInputStartEvent(id=fragment.id, tool_name=fragment.name)
            if fragment.argument_buffer:
                yield ToolInputDeltaEvent(id=fragment.id, delta=fragment.argument_buffer)
                yield from self._try_finalize(fragment)

        if arguments:
            fragment.argument_buffer += arguments
            if fragment.started:
                assert fragment.id is not None
                yield ToolInputDeltaEvent(id=fragment.id, delta=arguments)
                yield from self._try_finalize(fragment)

    def close(self, index: int) -> Generator[StreamEvent, None, None]:
        """Finalize the call at `index` because the provider signalled that its arguments are complete.

        An empty argument buffer is treated as `{}`. Arguments that still don't parse are reported as a
        protocol violation and the block is closed without a `ToolCallEvent`.
        """
        fragment = self._fragments.get(index)
        if fragment is None or fragment.finalized:
            return
        if not fragment.started:
            yield from self._report_unfinalized(fragment)
            return
        if not fragment.argument_buffer.strip():
            fragment.argument_buffer = '{}'
        yield from self._try_finalize(fragment)
        if not fragment.finalized:
            yield from self._report_unfinalized(fragment)

    def finish(self) -> Generator[StreamEvent, None, None]:
        """Report every call that never produced complete arguments, in the order the calls first appeared."""
        for fragment in self._fragments.values():
            if not fragment.finalized:
                yield from self._report_unfinalized(fragment)

    def _try_finalize(self, fragment: ToolCallFragment) -> Generator[StreamEvent, None, None]:
        if fragment.finalized:
            return
        try:
            pydantic_core.from_json(fragment.argument_buffer)
        except ValueError:
            return
        assert fragment.id is not None and fragment.name is not None
        fragment.finalized = True
        yield ToolInputEndEvent(id=fragment.id)
        yield ToolCallEvent(id=fragment.id, tool_name=fragment.name, input_json=fragment.argument_buffer)

    def _report_unfinalized(self, fragment: ToolCallFragment) -> Generator[StreamEvent, None, None]:
        fragment.finalized = True
        if not fragment.started:
            message = f'Tool call at index {fragment.index} never received a tool name'
            _logger.warning(message)
            yield ErrorEvent(kind='protocol_violation', message=message)
            return

        assert fragment.id is not None
        message = (
            f'Tool call {fragment.id!r} to {fragment.name!r} ended without complete JSON arguments: '
            f'{fragment.argument_buffer!r}'
        )
        _logger.warning(message)
        yield ErrorEvent(kind='protocol_violation', message=message)
        yield ToolInputEndEvent(id=fragment.id)
