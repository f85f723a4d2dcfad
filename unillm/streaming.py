"""Drives one provider stream from raw body bytes to canonical events delivered through callbacks.

Decoding, translation, tool call assembly and event delivery for a stream all happen synchronously on the
caller's thread or task; the only suspension point is waiting for the next chunk from the transport.
"""

from __future__ import annotations as _annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterable, Callable, Generator, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

import anyio
import httpx

from ._sse import EventStreamDecoder, FramingDiagnostic, ServerSentEvent, StreamDone
from .context import RequestContext
from .exceptions import (
    ModelHTTPError,
    StreamBufferOverflow,
    StreamCancelled,
    StreamInterrupted,
    StreamTimeout,
    UserError,
)
from .messages import ErrorEvent, StreamEvent, StreamStartEvent, StreamWarning
from .settings import StreamSettings, check_stream_settings
from .translators import StreamTranslator, WireFormat, infer_wire_format, translator_for

__all__ = (
    'StreamCallbacks',
    'StreamSession',
    'run_stream',
    'run_stream_async',
    'run_response_stream',
    'iter_stream_events',
)

_logger = logging.getLogger(__name__)


def _ignore_event(event: StreamEvent) -> None:
    pass


def _ignore_error(error: BaseException) -> None:
    pass


def _ignore_complete() -> None:
    pass


@dataclass
class StreamCallbacks:
    """The three callbacks through which a stream is delivered, invoked synchronously in emission order.

    State a consumer needs is captured by the callables themselves, e.g. bound methods or closures.
    """

    on_event: Callable[[StreamEvent], None] = _ignore_event
    """Called with every canonical event."""

    on_error: Callable[[BaseException], None] = _ignore_error
    """Called at most once, when the stream terminates abnormally (transport error, cancellation, timeout...)."""

    on_complete: Callable[[], None] = _ignore_complete
    """Called exactly once when the stream terminates for any reason, after every other callback."""


@dataclass
class StreamSession:
    """State of a single in-flight stream: its decoder, translator and delivery progress.

    A session is created per stream and discarded when it completes. Use
    [`StreamSession.create`][unillm.streaming.StreamSession.create] to build one from a provider or wire format,
    then either drive it with one of the `run_*` functions or call `start`, `feed` and `end` yourself.
    """

    translator: StreamTranslator
    callbacks: StreamCallbacks = field(default_factory=StreamCallbacks)
    context: RequestContext = field(default_factory=RequestContext)
    max_buffer_size: int | None = None
    warnings: list[StreamWarning] = field(default_factory=list)
    """Warnings delivered on the `StreamStartEvent`."""

    _decoder: EventStreamDecoder = field(init=False, repr=False)
    _state: Literal['pending', 'streaming', 'complete'] = field(default='pending', init=False)

    def __post_init__(self):
        self._decoder = EventStreamDecoder(max_buffer_size=self.max_buffer_size)

    @classmethod
    def create(
        cls,
        *,
        wire_format: WireFormat | None = None,
        provider: str | None = None,
        callbacks: StreamCallbacks | None = None,
        context: RequestContext | None = None,
        settings: StreamSettings | None = None,
        warnings: Sequence[StreamWarning] = (),
    ) -> StreamSession:
        """Create a session for a stream in `wire_format`, or in the wire format `provider` speaks.

        Raises:
            UserError: If neither `wire_format` nor `provider` is given, or the provider is unknown.
        """
        if wire_format is None:
            if provider is None:
                raise UserError('Either `wire_format` or `provider` must be provided')
            wire_format = infer_wire_format(provider)

        settings = settings or {}
        context = context or RequestContext()
        if (timeout := settings.get('timeout')) is not None:
            if context.deadline is None or context.clock() + timeout < context.deadline:
                context.with_timeout(timeout)

        translator = translator_for(
            wire_format,
            include_raw_chunks=settings.get('include_raw_chunks', False),
            tool_call_id_prefix=settings.get('tool_call_id_prefix', 'call'),
        )
        return cls(
            translator=translator,
            callbacks=callbacks or StreamCallbacks(),
            context=context,
            max_buffer_size=settings.get('max_buffer_size'),
            warnings=[*warnings, *check_stream_settings(settings)],
        )

    @property
    def completed(self) -> bool:
        """Whether `on_complete` has been called; all further calls are ignored."""
        return self._state == 'complete'

    @property
    def content_finished(self) -> bool:
        """Whether the `FinishEvent` has been delivered, so no further chunks need to be read."""
        return self.translator.finished

    def start(self) -> None:
        """Deliver the `StreamStartEvent`. Called implicitly by the first `feed` or `end`."""
        if self._state != 'pending':
            return
        self._state = 'streaming'
        _logger.debug('Starting %s stream', self.translator.wire_format)
        self.callbacks.on_event(StreamStartEvent(warnings=list(self.warnings)))

    def feed(self, chunk: bytes) -> None:
        """Process the next chunk of the response body."""
        if self.completed:
            return
        self.start()
        try:
            items = self._decoder.feed(chunk)
        except StreamBufferOverflow as e:
            self.fail(e)
            return
        self._deliver_items(items)

    def end(self) -> None:
        """Signal that the response body has ended normally, flushing the decoder and emitting the `FinishEvent`."""
        if self.completed:
            return
        self.start()
        self._deliver_items(self._decoder.close())
        self._deliver(self.translator.finish())
        self._state = 'complete'
        _logger.debug('Completed %s stream', self.translator.wire_format)
        self.callbacks.on_complete()

    def fail(self, error: BaseException) -> None:
        """Terminate the stream with `error`, e.g. a transport error, without emitting a `FinishEvent`."""
        if self.completed:
            return
        self._state = 'complete'
        if isinstance(error, StreamInterrupted):
            _logger.debug('Stream interrupted: %s', error)
        else:
            _logger.warning('Stream failed: %s', error)
        self._decoder.reset()
        try:
            self.callbacks.on_error(error)
        finally:
            self.callbacks.on_complete()

    def interrupt(self, error: StreamInterrupted) -> None:
        """Terminate the stream because it was cancelled or timed out, discarding any buffered state."""
        self.fail(error)

    def check_context(self) -> bool:
        """Check the request context, interrupting the stream if it was cancelled or its deadline has passed.

        Returns whether the stream should keep reading chunks.
        """
        if self.completed:
            return False
        if self.context.cancelled:
            self.interrupt(StreamCancelled())
        elif self.context.expired:
            self.interrupt(StreamTimeout(self.context.timeout))
        return not self.completed

    def __enter__(self) -> StreamSession:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any) -> None:
        # an exception escaping the driver is a consumer bug or task cancellation; it propagates after completion
        if exc is not None and not self.completed:
            self._state = 'complete'
            self.callbacks.on_complete()

    def _deliver_items(self, items: Iterable[ServerSentEvent | StreamDone | FramingDiagnostic]) -> None:
        for item in items:
            # nothing is delivered after the `FinishEvent`, including framing errors later in the same chunk
            if self.translator.finished:
                break
            if isinstance(item, ServerSentEvent):
                self._deliver(self.translator.translate(item))
            elif isinstance(item, StreamDone):
                self._deliver(self.translator.finish())
            else:
                self.callbacks.on_event(ErrorEvent(kind='framing', message=item.message))

    def _deliver(self, events: Iterable[StreamEvent]) -> None:
        for event in events:
            self.callbacks.on_event(event)


def _drive(session: StreamSession, chunks: Iterable[bytes]) -> Iterator[None]:
    """Feed `chunks` into `session` until the stream completes, yielding after each chunk is processed.

    A generator source is closed as soon as the stream completes, even if it has more chunks.
    """
    session.start()
    iterator = iter(chunks)
    try:
        while session.check_context():
            try:
                chunk = next(iterator)
            except StopIteration:
                session.end()
                return
            except Exception as e:
                session.fail(e)
                return
            session.feed(chunk)
            if session.content_finished:
                session.end()
                return
            yield
    finally:
        if isinstance(iterator, Generator):
            iterator.close()


def run_stream(
    chunks: Iterable[bytes],
    *,
    wire_format: WireFormat | None = None,
    provider: str | None = None,
    callbacks: StreamCallbacks | None = None,
    context: RequestContext | None = None,
    settings: StreamSettings | None = None,
    warnings: Sequence[StreamWarning] = (),
) -> None:
    """Normalize a stream read from a synchronous iterable of body chunks.

    Returns once `on_complete` has been called. Errors from the iterable (transport errors) are passed to
    `on_error` unchanged; exceptions raised by the callbacks themselves propagate to the caller.

    ```python
    from unillm import StreamCallbacks, run_stream

    events = []
    run_stream(
        [b'data: {"choices":[{"delta":{"content":"Hi"}}]}\\n\\n', b'data: [DONE]\\n\\n'],
        provider='openai',
        callbacks=StreamCallbacks(on_event=events.append),
    )
    ```
    """
    session = StreamSession.create(
        wire_format=wire_format,
        provider=provider,
        callbacks=callbacks,
        context=context,
        settings=settings,
        warnings=warnings,
    )
    with session:
        for _ in _drive(session, chunks):
            pass


def iter_stream_events(
    chunks: Iterable[bytes],
    *,
    wire_format: WireFormat | None = None,
    provider: str | None = None,
    context: RequestContext | None = None,
    settings: StreamSettings | None = None,
    warnings: Sequence[StreamWarning] = (),
) -> Iterator[StreamEvent]:
    """Normalize a stream, yielding its events instead of delivering them through callbacks.

    If the stream terminates abnormally, the error that would have been passed to `on_error` is raised after
    the last event has been yielded.
    """
    pending: list[StreamEvent] = []
    errors: list[BaseException] = []
    session = StreamSession.create(
        wire_format=wire_format,
        provider=provider,
        callbacks=StreamCallbacks(on_event=pending.append, on_error=errors.append),
        context=context,
        settings=settings,
        warnings=warnings,
    )
    with session:
        for _ in _drive(session, chunks):
            yield from pending
            pending.clear()
        yield from pending
        pending.clear()
    if errors:
        raise errors[0]


async def run_stream_async(
    chunks: AsyncIterable[bytes],
    *,
    wire_format: WireFormat | None = None,
    provider: str | None = None,
    callbacks: StreamCallbacks | None = None,
    context: RequestContext | None = None,
    settings: StreamSettings | None = None,
    warnings: Sequence[StreamWarning] = (),
) -> None:
    """Normalize a stream read from an asynchronous iterable of body chunks.

    Waiting for each chunk is bounded by the time remaining until the context's deadline, so a stalled
    transport still ends the stream with [`StreamTimeout`][unillm.exceptions.StreamTimeout].
    """
    session = StreamSession.create(
        wire_format=wire_format,
        provider=provider,
        callbacks=callbacks,
        context=context,
        settings=settings,
        warnings=warnings,
    )
    with session:
        session.start()
        iterator = chunks.__aiter__()
        try:
            while session.check_context():
                chunk: bytes | None = None
                with anyio.move_on_after(session.context.remaining()) as scope:
                    try:
                        chunk = await iterator.__anext__()
                    except StopAsyncIteration:
                        session.end()
                        break
                    except Exception as e:
                        session.fail(e)
                        break
                if scope.cancelled_caught:
                    session.interrupt(StreamTimeout(session.context.timeout))
                    break
                assert chunk is not None
                session.feed(chunk)
                if session.content_finished:
                    session.end()
                    break
        finally:
            if isinstance(iterator, AsyncGenerator):
                await iterator.aclose()


async def run_response_stream(
    response: httpx.Response,
    *,
    wire_format: WireFormat | None = None,
    provider: str | None = None,
    callbacks: StreamCallbacks | None = None,
    context: RequestContext | None = None,
    settings: StreamSettings | None = None,
    warnings: Sequence[StreamWarning] = (),
) -> None:
    """Normalize the streaming body of an `httpx` response, e.g. one opened with `AsyncClient.stream`.

    A response with a 4xx or 5xx status is not streamed; a [`ModelHTTPError`][unillm.exceptions.ModelHTTPError]
    carrying the response body is passed to `on_error` instead.
    """
    if response.status_code >= 400:
        session = StreamSession.create(
            wire_format=wire_format,
            provider=provider,
            callbacks=callbacks,
            context=context,
            settings=settings,
            warnings=warnings,
        )
        with session:
            await response.aread()
            try:
                body: object = response.json()
            except ValueError:
                body = response.text
            model_name = _model_name(provider, session.translator.wire_format)
            session.fail(ModelHTTPError(status_code=response.status_code, model_name=model_name, body=body))
        return

    await run_stream_async(
        response.aiter_bytes(),
        wire_format=wire_format,
        provider=provider,
        callbacks=callbacks,
        context=context,
        settings=settings,
        warnings=warnings,
    )


def _model_name(provider: str | None, wire_format: WireFormat) -> str:
    if provider and ':' in provider:
        return provider.split(':', maxsplit=1)[1]
    return provider or wire_format
