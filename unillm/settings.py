from __future__ import annotations

import warnings

from typing_extensions import TypedDict

from .messages import StreamWarning


class StreamSettings(TypedDict, total=False):
    """Settings to configure how a single provider stream is normalized.

    All settings apply to every wire format.
    """

    max_buffer_size: int
    """Maximum number of characters the event stream decoder may hold between chunks.

    A partial record larger than this ends the stream with a
    [`StreamBufferOverflow`][unillm.exceptions.StreamBufferOverflow] error. Unlimited by default.
    """

    include_raw_chunks: bool
    """Whether to emit a [`RawEvent`][unillm.messages.RawEvent] carrying each decoded provider record,
    before the events translated from it.

    Defaults to `False`.
    """

    timeout: float
    """Deadline for the whole stream, in seconds from when it is started.

    Applied to the stream's [`RequestContext`][unillm.context.RequestContext]; an earlier deadline already
    set on the context is kept.
    """

    tool_call_id_prefix: str
    """Prefix for the IDs generated for tool calls the provider streams without one.

    Defaults to `'call'`.
    """


def merge_stream_settings(base: StreamSettings | None, overrides: StreamSettings | None) -> StreamSettings | None:
    """Merge two sets of stream settings, preferring the overrides.

    A common use case is: merge_stream_settings(<client settings>, <request settings>)
    """
    if base and overrides:
        return base | overrides
    else:
        return base or overrides


def check_stream_settings(settings: StreamSettings | None) -> list[StreamWarning]:
    """Warn about keys that aren't stream settings, returning one `StreamWarning` per ignored key.

    `StreamSettings` is a plain dict at runtime, so a misspelled key would otherwise be silently ignored.
    """
    stream_warnings: list[StreamWarning] = []
    for name in settings or {}:
        if name not in StreamSettings.__annotations__:
            message = f'Ignoring unknown stream setting {name!r}'
            warnings.warn(message, UserWarning, stacklevel=3)
            stream_warnings.append(StreamWarning.unsupported_setting(name, message))
    return stream_warnings
