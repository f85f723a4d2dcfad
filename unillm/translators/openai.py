from __future__ import annotations as _annotations

import itertools
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, ClassVar

from .. import _utils
from .._normalize import OPENAI_FINISH_REASON_MAP, normalize_openai_usage
from ..messages import ResponseMetadataEvent, StreamEvent
from . import StreamTranslator, WireFormat

__all__ = ('OpenAIChatTranslator',)


@dataclass(kw_only=True)
class OpenAIChatTranslator(StreamTranslator):
    """Translator for OpenAI chat completion chunks, also spoken by many OpenAI-compatible providers.

    Only the first choice of each chunk is used.
    """

    wire_format: ClassVar[WireFormat] = 'openai-chat'

    _metadata_sent: bool = field(default=False, init=False, repr=False)

    def _translate_record(self, event_name: str | None, payload: dict[str, Any]) -> Iterator[StreamEvent]:
        if not self._metadata_sent and any(payload.get(key) for key in ('id', 'model', 'created')):
            self._metadata_sent = True
            created = payload.get('created')
            yield ResponseMetadataEvent(
                id=_utils.as_str(payload.get('id')),
                model_id=_utils.as_str(payload.get('model')),
                timestamp=_utils.number_to_datetime(created) if isinstance(created, int | float) else None,
            )

        if (error := payload.get('error')) is not None:
            yield self._provider_error(error)
            return

        if isinstance(usage := payload.get('usage'), dict):
            self.usage = normalize_openai_usage(usage)

        choices = _utils.as_list(payload.get('choices'))
        if not choices or not isinstance(choice := choices[0], dict):
            return

        if (raw_finish_reason := _utils.as_str(choice.get('finish_reason'))) is not None:
            self._set_finish_reason(raw_finish_reason, OPENAI_FINISH_REASON_MAP)

        delta = choice.get('delta')
        # Azure's async content filter can send chunks with a null delta.
        if not isinstance(delta, dict):
            return

        yield from itertools.chain(
            self._map_reasoning_delta(delta),
            self._map_text_delta(delta),
            self._map_tool_call_delta(delta),
            self._map_annotations(delta),
        )

    def _map_reasoning_delta(self, delta: dict[str, Any]) -> Iterable[StreamEvent]:
        # `reasoning_content` is sent by DeepSeek and Moonshot, `reasoning` by OpenRouter and gpt-oss via Ollama.
        for field_name in ('reasoning', 'reasoning_content'):
            if reasoning := _utils.as_str(delta.get(field_name)):
                yield from self._block_delta('reasoning', reasoning)
                break

    def _map_text_delta(self, delta: dict[str, Any]) -> Iterable[StreamEvent]:
        if content := _utils.as_str(delta.get('content')):
            yield from self._block_delta('text', content)

    def _map_tool_call_delta(self, delta: dict[str, Any]) -> Iterable[StreamEvent]:
        for position, tool_call in enumerate(_utils.as_list(delta.get('tool_calls'))):
            if not isinstance(tool_call, dict):
                continue
            function = _utils.as_object(tool_call.get('function'))
            yield from self._tool_call_fragment(
                _utils.as_int(tool_call.get('index'), position),
                tool_call_id=_utils.as_str(tool_call.get('id')),
                name=_utils.as_str(function.get('name')),
                arguments=_utils.as_str(function.get('arguments')),
            )

    def _map_annotations(self, delta: dict[str, Any]) -> Iterable[StreamEvent]:
        for annotation in _utils.as_list(delta.get('annotations')):
            if isinstance(annotation, dict) and annotation.get('type') == 'url_citation':
                citation = _utils.as_object(annotation.get('url_citation'))
                yield self._source(url=_utils.as_str(citation.get('url')), title=_utils.as_str(citation.get('title')))
