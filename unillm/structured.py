"""Streaming of structured ("object") output built on top of the canonical text stream.

The model is asked to answer in JSON, so its text deltas are accumulated and run through the partial JSON
parser after every delta, giving consumers a progressively more complete object while the stream runs.
"""

from __future__ import annotations as _annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Annotated, Any, Generic, Literal, TypeVar

import pydantic

from . import _utils
from ._partial_json import Complete, Incomplete, parse_partial_json, preview_partial_json
from .messages import ErrorEvent, FinishEvent, FinishReason, StreamEvent, TextDeltaEvent
from .streaming import StreamCallbacks
from .usage import NormalizedUsage

__all__ = (
    'PartialTextPart',
    'ObjectUpdatePart',
    'ObjectFinishPart',
    'ObjectErrorPart',
    'ObjectStreamPart',
    'ObjectStreamAccumulator',
    'object_stream_callbacks',
)

_logger = logging.getLogger(__name__)

OutputT = TypeVar('OutputT')


@dataclass(repr=False, kw_only=True)
class PartialTextPart:
    """A text delta from the model, exactly as received."""

    text: str
    part_kind: Literal['partial-text'] = 'partial-text'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ObjectUpdatePart:
    """A new, more complete version of the object being generated.

    Only emitted when the value differs from the previous update.
    """

    partial_object: Any
    part_kind: Literal['object-update'] = 'object-update'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ObjectFinishPart:
    """The final object, validated against the output type when one was given."""

    object: Any
    usage: NormalizedUsage = field(default_factory=NormalizedUsage)
    finish_reason: FinishReason = 'unknown'
    part_kind: Literal['object-finish'] = 'object-finish'

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False, kw_only=True)
class ObjectErrorPart:
    """The stream couldn't produce a valid object."""

    message: str
    part_kind: Literal['object-error'] = 'object-error'

    __repr__ = _utils.dataclasses_no_defaults_repr


ObjectStreamPart = Annotated[
    PartialTextPart | ObjectUpdatePart | ObjectFinishPart | ObjectErrorPart,
    pydantic.Discriminator('part_kind'),
]
"""Any part of an object stream."""


@dataclass
class ObjectStreamAccumulator(Generic[OutputT]):
    """Accumulates the text of one stream and turns it into object stream parts."""

    output_type: type[OutputT] | None = None
    """Type the final object is validated against; when `None` the parsed JSON value is returned as is."""

    raw_text: str = field(default='', init=False)
    """All text received so far."""

    partial_object: Any = field(default=None, init=False)
    """The most recent partial object, or `None` if nothing could be parsed yet."""

    object: OutputT | None = field(default=None, init=False)
    """The final object, once the stream has finished successfully."""

    _type_adapter: pydantic.TypeAdapter[OutputT] | None = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if self.output_type is not None:
            self._type_adapter = pydantic.TypeAdapter(self.output_type)

    def handle_event(self, event: StreamEvent) -> Iterator[ObjectStreamPart]:
        """Update the accumulator with one canonical event, yielding the object stream parts it produces."""
        if isinstance(event, TextDeltaEvent):
            self.raw_text += event.delta
            yield PartialTextPart(text=event.delta)
            candidate = self._current_value()
            if candidate is not None and candidate != self.partial_object:
                self.partial_object = candidate
                yield ObjectUpdatePart(partial_object=candidate)
        elif isinstance(event, FinishEvent):
            yield self._finish(event)
        elif isinstance(event, ErrorEvent) and event.kind == 'provider':
            yield ObjectErrorPart(message=event.message)

    def as_callbacks(
        self,
        on_part: Callable[[ObjectStreamPart], None],
        *,
        on_error: Callable[[BaseException], None] | None = None,
        on_complete: Callable[[], None] | None = None,
    ) -> StreamCallbacks:
        """Build stream callbacks that feed this accumulator and pass its parts to `on_part`."""

        def on_event(event: StreamEvent) -> None:
            for part in self.handle_event(event):
                on_part(part)

        callbacks = StreamCallbacks(on_event=on_event)
        if on_error is not None:
            callbacks.on_error = on_error
        if on_complete is not None:
            callbacks.on_complete = on_complete
        return callbacks

    def _current_value(self) -> Any:
        result = parse_partial_json(self.raw_text)
        if isinstance(result, Complete):
            return result.value
        elif isinstance(result, Incomplete):
            return preview_partial_json(self.raw_text)
        else:
            return None

    def _finish(self, event: FinishEvent) -> ObjectStreamPart:
        result = parse_partial_json(self.raw_text)
        if isinstance(result, Incomplete):
            return self._error('Stream finished before the JSON output was complete')
        elif not isinstance(result, Complete):
            return self._error(f'Model output contains no JSON value: {result.reason}')

        value = result.value
        if self._type_adapter is not None:
            try:
                value = self._type_adapter.validate_python(value)
            except pydantic.ValidationError as e:
                return self._error(f'Model output failed validation: {e}')
        self.object = value
        return ObjectFinishPart(object=value, usage=event.usage, finish_reason=event.finish_reason)

    @staticmethod
    def _error(message: str) -> ObjectErrorPart:
        _logger.warning(message)
        return ObjectErrorPart(message=message)


def object_stream_callbacks(
    on_part: Callable[[ObjectStreamPart], None],
    *,
    output_type: type[Any] | None = None,
    on_error: Callable[[BaseException], None] | None = None,
    on_complete: Callable[[], None] | None = None,
) -> StreamCallbacks:
    """Build stream callbacks that deliver a stream as object stream parts.

    ```python
    from pydantic import BaseModel

    from unillm import run_stream
    from unillm.structured import ObjectStreamPart, object_stream_callbacks


    class City(BaseModel):
        name: str
        population: int


    def stream_city(chunks: list[bytes]) -> list[ObjectStreamPart]:
        parts: list[ObjectStreamPart] = []
        run_stream(chunks, provider='openai', callbacks=object_stream_callbacks(parts.append, output_type=City))
        return parts
    ```
    """
    accumulator = ObjectStreamAccumulator(output_type=output_type)
    return accumulator.as_callbacks(on_part, on_error=on_error, on_complete=on_complete)
