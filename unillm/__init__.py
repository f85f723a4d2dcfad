from importlib.metadata import version as _metadata_version

from .context import RequestContext
from .exceptions import (
    ModelAPIError,
    ModelHTTPError,
    ProtocolViolation,
    StreamBufferOverflow,
    StreamCancelled,
    StreamInterrupted,
    StreamTimeout,
    UnexpectedModelBehavior,
    UnillmError,
    UserError,
)
from .messages import (
    ErrorEvent,
    FileEvent,
    FinishEvent,
    FinishReason,
    RawEvent,
    ReasoningDeltaEvent,
    ReasoningEndEvent,
    ReasoningStartEvent,
    ResponseMetadataEvent,
    SourceEvent,
    StreamEvent,
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
)
from .settings import StreamSettings, merge_stream_settings
from .streaming import (
    StreamCallbacks,
    StreamSession,
    iter_stream_events,
    run_response_stream,
    run_stream,
    run_stream_async,
)
from .translators import WireFormat, infer_wire_format
from .usage import InputTokens, NormalizedUsage, OutputTokens

__all__ = (
    '__version__',
    # streaming
    'StreamCallbacks',
    'StreamSession',
    'run_stream',
    'run_stream_async',
    'run_response_stream',
    'iter_stream_events',
    'WireFormat',
    'infer_wire_format',
    'RequestContext',
    'StreamSettings',
    'merge_stream_settings',
    # events
    'StreamEvent',
    'TextStartEvent',
    'TextDeltaEvent',
    'TextEndEvent',
    'ReasoningStartEvent',
    'ReasoningDeltaEvent',
    'ReasoningEndEvent',
    'ToolInputStartEvent',
    'ToolInputDeltaEvent',
    'ToolInputEndEvent',
    'ToolCallEvent',
    'ToolResultEvent',
    'FileEvent',
    'SourceEvent',
    'StreamStartEvent',
    'ResponseMetadataEvent',
    'FinishEvent',
    'RawEvent',
    'ErrorEvent',
    'FinishReason',
    'StreamWarning',
    # usage
    'NormalizedUsage',
    'InputTokens',
    'OutputTokens',
    # exceptions
    'UnillmError',
    'UserError',
    'UnexpectedModelBehavior',
    'ProtocolViolation',
    'StreamBufferOverflow',
    'ModelAPIError',
    'ModelHTTPError',
    'StreamInterrupted',
    'StreamCancelled',
    'StreamTimeout',
)
__version__ = _metadata_version('unillm')
