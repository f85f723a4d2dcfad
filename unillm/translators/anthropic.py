from __future__ import annotations as _annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal

from .. import _utils
from .._normalize import ANTHROPIC_FINISH_REASON_MAP, normalize_anthropic_usage
from ..messages import ErrorEvent, ResponseMetadataEvent, StreamEvent
from . import StreamTranslator, WireFormat

__all__ = ('AnthropicMessagesTranslator',)

_logger = logging.getLogger(__name__)

_ContentBlockKind = Literal['text', 'reasoning', 'tool']


@dataclass(kw_only=True)
class AnthropicMessagesTranslator(StreamTranslator):
    """Translator for the Anthropic messages streaming API.

    Content arrives as indexed blocks bracketed by `content_block_start` and `content_block_stop`.
    Input tokens are reported on `message_start` and cumulative output tokens on `message_delta`, so the
    raw usage fields are overlaid as they arrive and the normalized usage is recomputed from the overlay.
    """

    wire_format: ClassVar[WireFormat] = 'anthropic-messages'

    _content_blocks: dict[int, _ContentBlockKind] = field(default_factory=dict, init=False, repr=False)
    _raw_usage: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def _translate_record(self, event_name: str | None, payload: dict[str, Any]) -> Iterator[StreamEvent]:
        kind = event_name or _utils.as_str(payload.get('type'))
        if kind == 'message_start':
            message = _utils.as_object(payload.get('message'))
            yield ResponseMetadataEvent(
                id=_utils.as_str(message.get('id')), model_id=_utils.as_str(message.get('model'))
            )
            self._update_usage(message.get('usage'))
        elif kind == 'content_block_start':
            yield from self._handle_block_start(_block_index(payload), _utils.as_object(payload.get('content_block')))
        elif kind == 'content_block_delta':
            yield from self._handle_block_delta(_block_index(payload), _utils.as_object(payload.get('delta')))
        elif kind == 'content_block_stop':
            yield from self._handle_block_stop(_block_index(payload))
        elif kind == 'message_delta':
            delta = _utils.as_object(payload.get('delta'))
            if (stop_reason := _utils.as_str(delta.get('stop_reason'))) is not None:
                self._set_finish_reason(stop_reason, ANTHROPIC_FINISH_REASON_MAP)
            self._update_usage(payload.get('usage'))
        elif kind == 'message_stop':
            yield from self._handle_message_stop()
        elif kind == 'error':
            yield self._provider_error(payload.get('error'))
        # `ping` and unknown event types are ignored

    def _handle_block_start(self, index: int, block: dict[str, Any]) -> Iterator[StreamEvent]:
        block_type = block.get('type')
        if block_type == 'text':
            self._content_blocks[index] = 'text'
            yield from self._start_block('text')
            if text := _utils.as_str(block.get('text')):
                yield from self._block_delta('text', text)
        elif block_type in ('thinking', 'redacted_thinking'):
            self._content_blocks[index] = 'reasoning'
            yield from self._start_block('reasoning')
            if thinking := _utils.as_str(block.get('thinking')):
                yield from self._block_delta('reasoning', thinking)
        elif block_type == 'tool_use':
            self._content_blocks[index] = 'tool'
            yield from self._tool_call_fragment(
                index, tool_call_id=_utils.as_str(block.get('id')), name=_utils.as_str(block.get('name'))
            )

    def _handle_block_delta(self, index: int, delta: dict[str, Any]) -> Iterator[StreamEvent]:
        delta_type = delta.get('type')
        if delta_type == 'text_delta':
            if text := _utils.as_str(delta.get('text')):
                yield from self._block_delta('text', text)
        elif delta_type == 'thinking_delta':
            if thinking := _utils.as_str(delta.get('thinking')):
                yield from self._block_delta('reasoning', thinking)
        elif delta_type == 'input_json_delta':
            yield from self._tool_call_fragment(index, arguments=_utils.as_str(delta.get('partial_json')))
        elif delta_type == 'citations_delta':
            citation = _utils.as_object(delta.get('citation'))
            if url := _utils.as_str(citation.get('url')):
                yield self._source(url=url, title=_utils.as_str(citation.get('title')))
            else:
                yield self._source(source_type='document', title=_utils.as_str(citation.get('document_title')))
        # `signature_delta` carries no content

    def _handle_block_stop(self, index: int) -> Iterator[StreamEvent]:
        kind = self._content_blocks.pop(index, None)
        if kind == 'tool':
            yield from self._tool_calls.close(index)
        elif kind is not None and self._open_block is not None and self._open_block[0] == kind:
            yield from self._close_block()

    def _handle_message_stop(self) -> Iterator[StreamEvent]:
        if self._content_blocks:
            message = f'Content blocks {sorted(self._content_blocks)} were still open at message_stop'
            _logger.warning(message)
            yield ErrorEvent(kind='protocol_violation', message=message)
            for index, kind in sorted(self._content_blocks.items()):
                if kind == 'tool':
                    yield from self._tool_calls.close(index)
            self._content_blocks.clear()
        yield from self.finish()

    def _update_usage(self, usage: Any) -> None:
        if not isinstance(usage, dict):
            return
        self._raw_usage.update({key: value for key, value in usage.items() if value is not None})
        self.usage = normalize_anthropic_usage(self._raw_usage)


def _block_index(payload: dict[str, Any]) -> int:
    return _utils.as_int(payload.get('index'), 0)
