from __future__ import annotations as _annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, ClassVar

import pydantic_core

from .. import _utils
from .._normalize import GOOGLE_FINISH_REASON_MAP, normalize_google_usage
from ..messages import FileEvent, FinishReason, ResponseMetadataEvent, StreamEvent
from . import StreamTranslator, WireFormat

__all__ = ('GoogleGenerativeAITranslator',)


@dataclass(kw_only=True)
class GoogleGenerativeAITranslator(StreamTranslator):
    """Translator for Gemini `streamGenerateContent?alt=sse` responses, from the Generative Language API or Vertex AI.

    Gemini sends function calls whole rather than as argument fragments, so each one is delivered through the
    tool call assembler as a single fragment and produces its start, delta, end and call events at once.
    """

    wire_format: ClassVar[WireFormat] = 'google-generative-ai'

    _metadata_sent: bool = field(default=False, init=False, repr=False)
    _tool_call_count: int = field(default=0, init=False, repr=False)

    def _translate_record(self, event_name: str | None, payload: dict[str, Any]) -> Iterator[StreamEvent]:
        if not self._metadata_sent and (payload.get('responseId') or payload.get('modelVersion')):
            self._metadata_sent = True
            yield ResponseMetadataEvent(
                id=_utils.as_str(payload.get('responseId')), model_id=_utils.as_str(payload.get('modelVersion'))
            )

        if (error := payload.get('error')) is not None:
            yield self._provider_error(error)
            return

        if isinstance(usage := payload.get('usageMetadata'), dict):
            self.usage = normalize_google_usage(usage)

        candidates = _utils.as_list(payload.get('candidates'))
        if not candidates or not isinstance(candidate := candidates[0], dict):
            return

        if (raw_finish_reason := _utils.as_str(candidate.get('finishReason'))) is not None:
            self._set_finish_reason(raw_finish_reason, GOOGLE_FINISH_REASON_MAP)

        content = _utils.as_object(candidate.get('content'))
        for part in _utils.as_list(content.get('parts')):
            if isinstance(part, dict):
                yield from self._map_part(part)

        grounding = _utils.as_object(candidate.get('groundingMetadata'))
        for chunk in _utils.as_list(grounding.get('groundingChunks')):
            web = _utils.as_object(chunk.get('web') if isinstance(chunk, dict) else None)
            if uri := _utils.as_str(web.get('uri')):
                yield self._source(url=uri, title=_utils.as_str(web.get('title')))

    def _map_part(self, part: dict[str, Any]) -> Iterator[StreamEvent]:
        if text := _utils.as_str(part.get('text')):
            yield from self._block_delta('reasoning' if part.get('thought') else 'text', text)
        elif function_call := _utils.as_object(part.get('functionCall')):
            index = self._tool_call_count
            self._tool_call_count += 1
            arguments = pydantic_core.to_json(_utils.as_object(function_call.get('args'))).decode()
            yield from self._tool_call_fragment(
                index,
                tool_call_id=_utils.as_str(function_call.get('id')),
                name=_utils.as_str(function_call.get('name')),
                arguments=arguments,
            )
        elif inline_data := _utils.as_object(part.get('inlineData')):
            yield FileEvent(
                media_type=_utils.as_str(inline_data.get('mimeType')) or 'application/octet-stream',
                data=_utils.as_str(inline_data.get('data')) or '',
            )

    def _final_finish_reason(self) -> FinishReason:
        # Gemini reports STOP even when the turn ended with function calls.
        if self.finish_reason == 'stop' and self._tool_calls.has_tool_calls:
            return 'tool_calls'
        return self.finish_reason
