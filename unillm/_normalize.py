"""Reconciles provider finish reasons and token usage shapes into canonical forms."""

from __future__ import annotations as _annotations

from collections.abc import Mapping
from typing import Any

from ._utils import as_object
from .messages import FinishReason
from .usage import InputTokens, NormalizedUsage, OutputTokens

OPENAI_FINISH_REASON_MAP: dict[str, FinishReason] = {
    'stop': 'stop',
    'length': 'length',
    'tool_calls': 'tool_calls',
    'function_call': 'tool_calls',
    'content_filter': 'content_filter',
}

ANTHROPIC_FINISH_REASON_MAP: dict[str, FinishReason] = {
    'end_turn': 'stop',
    'stop_sequence': 'stop',
    'pause_turn': 'stop',
    'max_tokens': 'length',
    'model_context_window_exceeded': 'length',
    'tool_use': 'tool_calls',
    'refusal': 'content_filter',
}

GOOGLE_FINISH_REASON_MAP: dict[str, FinishReason] = {
    'STOP': 'stop',
    'MAX_TOKENS': 'length',
    'SAFETY': 'content_filter',
    'RECITATION': 'content_filter',
    'BLOCKLIST': 'content_filter',
    'PROHIBITED_CONTENT': 'content_filter',
    'SPII': 'content_filter',
    'IMAGE_SAFETY': 'content_filter',
    'MALFORMED_FUNCTION_CALL': 'error',
    'UNEXPECTED_TOOL_CALL': 'error',
}


def map_finish_reason(raw: str | None, table: Mapping[str, FinishReason]) -> FinishReason:
    """Map a provider finish reason string to a [`FinishReason`][unillm.messages.FinishReason].

    Matching is exact and case sensitive. `None` means the provider never reported a reason.
    """
    if raw is None:
        return 'unknown'
    return table.get(raw, 'other')


def _int_or_none(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def _int(value: Any) -> int:
    return _int_or_none(value) or 0


def normalize_openai_usage(usage: Mapping[str, Any]) -> NormalizedUsage:
    """Normalize an OpenAI chat completions `usage` object."""
    prompt_details = as_object(usage.get('prompt_tokens_details'))
    completion_details = as_object(usage.get('completion_tokens_details'))
    return NormalizedUsage(
        input_tokens=InputTokens(
            total=_int(usage.get('prompt_tokens')),
            cache_read=_int_or_none(prompt_details.get('cached_tokens')),
        ),
        output_tokens=OutputTokens(
            total=_int(usage.get('completion_tokens')),
            reasoning=_int_or_none(completion_details.get('reasoning_tokens')),
        ),
    )


def normalize_anthropic_usage(usage: Mapping[str, Any]) -> NormalizedUsage:
    """Normalize an Anthropic messages `usage` object.

    Anthropic's `input_tokens` excludes cached tokens, so cache reads and writes are added to the total.
    """
    cache_read = _int_or_none(usage.get('cache_read_input_tokens'))
    cache_write = _int_or_none(usage.get('cache_creation_input_tokens'))
    return NormalizedUsage(
        input_tokens=InputTokens(
            total=_int(usage.get('input_tokens')) + (cache_read or 0) + (cache_write or 0),
            cache_read=cache_read,
            cache_write=cache_write,
        ),
        output_tokens=OutputTokens(total=_int(usage.get('output_tokens'))),
    )


def normalize_google_usage(usage: Mapping[str, Any]) -> NormalizedUsage:
    """Normalize a Gemini `usageMetadata` object."""
    thoughts = _int_or_none(usage.get('thoughtsTokenCount'))
    return NormalizedUsage(
        input_tokens=InputTokens(
            total=_int(usage.get('promptTokenCount')),
            cache_read=_int_or_none(usage.get('cachedContentTokenCount')),
        ),
        output_tokens=OutputTokens(
            total=_int(usage.get('candidatesTokenCount')) + (thoughts or 0),
            reasoning=thoughts,
        ),
    )
