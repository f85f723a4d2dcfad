"""Translators from provider-specific stream records to canonical [`StreamEvent`][unillm.messages.StreamEvent]s.

Each supported wire format has one `StreamTranslator` subclass. A translator instance holds the state of a
single stream (open blocks, tool call fragments, usage, finish reason) and must not be shared between streams.
"""

from __future__ import annotations as _annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Generator, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, TypeAlias, get_args

import pydantic_core
from typing_extensions import TypeAliasType, assert_never

from .._normalize import map_finish_reason
from .._sse import ServerSentEvent
from .._tool_call_assembler import ToolCallAssembler
from ..exceptions import UserError
from ..messages import (
    ErrorEvent,
    FinishEvent,
    FinishReason,
    RawEvent,
    ReasoningDeltaEvent,
    ReasoningEndEvent,
    ReasoningStartEvent,
    SourceEvent,
    StreamEvent,
    TextDeltaEvent,
    TextEndEvent,
    TextStartEvent,
)
from ..usage import NormalizedUsage

__all__ = (
    'WireFormat',
    'OpenAIChatCompatibleProvider',
    'StreamTranslator',
    'translator_for',
    'infer_wire_format',
)

_logger = logging.getLogger(__name__)

WireFormat: TypeAlias = Literal['openai-chat', 'anthropic-messages', 'google-generative-ai']
"""The closed set of stream wire formats a translator exists for."""

OpenAIChatCompatibleProvider = TypeAliasType(
    'OpenAIChatCompatibleProvider',
    Literal[
        'azure',
        'cerebras',
        'deepinfra',
        'deepseek',
        'fireworks',
        'groq',
        'huggingface',
        'mistral',
        'openrouter',
        'perplexity',
        'togetherai',
        'xai',
    ],
)
"""Providers whose streaming endpoints speak the OpenAI chat completions wire format."""

BlockKind: TypeAlias = Literal['text', 'reasoning']

_BLOCK_EVENTS = {
    'text': (TextStartEvent, TextDeltaEvent, TextEndEvent),
    'reasoning': (ReasoningStartEvent, ReasoningDeltaEvent, ReasoningEndEvent),
}


@dataclass(kw_only=True)
class StreamTranslator(ABC):
    """Base class for the translator of one wire format.

    Subclasses implement [`_translate_record`][unillm.translators.StreamTranslator._translate_record], using the
    block helpers here so that every text and reasoning block is started before its deltas and ended exactly once.
    """

    wire_format: ClassVar[WireFormat]

    include_raw_chunks: bool = False
    """Whether to emit a `RawEvent` for every decoded record."""

    tool_call_id_prefix: str = 'call'
    """Prefix for tool call IDs generated when the provider doesn't send one."""

    usage: NormalizedUsage = field(default_factory=NormalizedUsage)
    """The most recently reported usage; replaced, never added to."""

    finish_reason_raw: str | None = None
    """The finish reason string exactly as the provider last reported it."""

    finish_reason: FinishReason = 'unknown'

    _tool_calls: ToolCallAssembler = field(init=False, repr=False)
    _open_block: tuple[BlockKind, str] | None = field(default=None, init=False, repr=False)
    _block_counts: Counter[str] = field(default_factory=Counter, init=False, repr=False)
    _finished: bool = field(default=False, init=False, repr=False)

    def __post_init__(self):
        self._tool_calls = ToolCallAssembler(tool_call_id_prefix=self.tool_call_id_prefix)

    @property
    def finished(self) -> bool:
        """Whether the `FinishEvent` has been emitted; later records are ignored."""
        return self._finished

    def translate(self, record: ServerSentEvent) -> Iterator[StreamEvent]:
        """Translate one decoded event stream record into zero or more events."""
        if self._finished:
            return
        try:
            payload = pydantic_core.from_json(record.data)
        except ValueError as e:
            yield self._record_parse_error(f'Skipping record that is not valid JSON ({e}): {record.data[:80]!r}')
            return

        if self.include_raw_chunks:
            yield RawEvent(raw_value=payload)

        if not isinstance(payload, dict):
            yield self._record_parse_error(f'Skipping record that is not a JSON object: {record.data[:80]!r}')
            return

        # events already yielded for a record that fails partway are kept; the rest of the record is skipped
        try:
            yield from self._translate_record(record.event, payload)
        except (TypeError, AttributeError, ValueError, OverflowError) as e:
            yield self._record_parse_error(f'Skipping record with an unexpected shape ({e}): {record.data[:80]!r}')

    def finish(self) -> Iterator[StreamEvent]:
        """Close any open blocks, report unfinished tool calls and emit the `FinishEvent`.

        Only the first call produces events.
        """
        if self._finished:
            return
        self._finished = True
        yield from self._close_block()
        yield from self._tool_calls.finish()
        yield FinishEvent(usage=self.usage, finish_reason=self._final_finish_reason())

    @abstractmethod
    def _translate_record(self, event_name: str | None, payload: dict[str, Any]) -> Iterator[StreamEvent]:
        """Dispatch one decoded record on its discriminant.

        `event_name` is the record's event stream `event:` field, if it had one. Records with an unknown
        discriminant must be ignored. A `TypeError`, `AttributeError`, `ValueError` or `OverflowError` raised
        while handling a record is reported as a `record_parse` error and the stream continues.
        """
        raise NotImplementedError()

    def _final_finish_reason(self) -> FinishReason:
        return self.finish_reason

    def _set_finish_reason(self, raw: str | None, table: Mapping[str, FinishReason]) -> None:
        self.finish_reason_raw = raw
        self.finish_reason = map_finish_reason(raw, table)

    def _start_block(self, kind: BlockKind) -> Generator[StreamEvent, None, None]:
        yield from self._close_block()
        block_id = f'{kind}-{self._block_counts[kind]}'
        self._block_counts[kind] += 1
        self._open_block = kind, block_id
        start_cls, _, _ = _BLOCK_EVENTS[kind]
        yield start_cls(id=block_id)

    def _block_delta(self, kind: BlockKind, delta: str) -> Generator[StreamEvent, None, None]:
        """Append to the open block of `kind`, first switching blocks if a different kind is open."""
        if self._open_block is None or self._open_block[0] != kind:
            yield from self._start_block(kind)
        assert self._open_block is not None
        _, delta_cls, _ = _BLOCK_EVENTS[kind]
        yield delta_cls(id=self._open_block[1], delta=delta)

    def _close_block(self) -> Generator[StreamEvent, None, None]:
        if self._open_block is None:
            return
        kind, block_id = self._open_block
        self._open_block = None
        _, _, end_cls = _BLOCK_EVENTS[kind]
        yield end_cls(id=block_id)

    def _tool_call_fragment(
        self,
        index: int,
        *,
        tool_call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> Generator[StreamEvent, None, None]:
        yield from self._close_block()
        yield from self._tool_calls.handle_fragment(index, tool_call_id=tool_call_id, name=name, arguments=arguments)

    def _source(
        self, *, url: str | None = None, title: str | None = None, source_type: Literal['url', 'document'] = 'url'
    ) -> SourceEvent:
        source_id = f'source-{self._block_counts["source"]}'
        self._block_counts['source'] += 1
        return SourceEvent(id=source_id, source_type=source_type, url=url, title=title)

    def _provider_error(self, error: Any) -> ErrorEvent:
        if isinstance(error, dict):
            message = error.get('message') or error.get('type') or str(error)
        else:
            message = str(error)
        _logger.warning('Provider reported an error mid-stream: %s', message)
        self.finish_reason = 'error'
        return ErrorEvent(kind='provider', message=str(message))

    @staticmethod
    def _record_parse_error(message: str) -> ErrorEvent:
        _logger.warning(message)
        return ErrorEvent(kind='record_parse', message=message)


def translator_for(
    wire_format: WireFormat, *, include_raw_chunks: bool = False, tool_call_id_prefix: str = 'call'
) -> StreamTranslator:
    """Create a fresh translator for one stream in the given wire format."""
    if wire_format == 'openai-chat':
        from .openai import OpenAIChatTranslator

        return OpenAIChatTranslator(include_raw_chunks=include_raw_chunks, tool_call_id_prefix=tool_call_id_prefix)
    elif wire_format == 'anthropic-messages':
        from .anthropic import AnthropicMessagesTranslator

        return AnthropicMessagesTranslator(
            include_raw_chunks=include_raw_chunks, tool_call_id_prefix=tool_call_id_prefix
        )
    elif wire_format == 'google-generative-ai':
        from .google import GoogleGenerativeAITranslator

        return GoogleGenerativeAITranslator(
            include_raw_chunks=include_raw_chunks, tool_call_id_prefix=tool_call_id_prefix
        )
    else:
        assert_never(wire_format)


def infer_wire_format(provider: str) -> WireFormat:
    """Infer the stream wire format from a provider name, or a `'provider:model'` string.

    ```python
    from unillm.translators import infer_wire_format

    assert infer_wire_format('groq:llama-3.3-70b-versatile') == 'openai-chat'
    ```
    """
    provider_name = provider.split(':', maxsplit=1)[0].strip().lower()
    if provider_name in ('openai', *get_args(OpenAIChatCompatibleProvider.__value__)):
        return 'openai-chat'
    elif provider_name == 'anthropic':
        return 'anthropic-messages'
    elif provider_name in ('google', 'google-gla', 'google-vertex'):
        return 'google-generative-ai'
    else:
        raise UserError(f'Unknown provider: {provider}')
