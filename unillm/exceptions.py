from __future__ import annotations as _annotations

import json

__all__ = (
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


class UnillmError(RuntimeError):
    """Base class for errors raised or reported by unillm."""

    message: str
    """The error message."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class UserError(UnillmError):
    """Error caused by a usage mistake by the application developer."""


class UnexpectedModelBehavior(UnillmError):
    """Error caused by unexpected output from a model provider's stream."""

    body: str | None
    """The body of the offending record, if available."""

    def __init__(self, message: str, body: str | None = None):
        if body is None:
            self.body = None
        else:
            try:
                self.body = json.dumps(json.loads(body), indent=2)
            except ValueError:
                self.body = body
        super().__init__(message)

    def __str__(self) -> str:
        if self.body:
            return f'{self.message}, body:\n{self.body}'
        else:
            return self.message


class ProtocolViolation(UnexpectedModelBehavior):
    """A sequence of stream events broke the block protocol, as detected by `check_block_ordering`."""


class StreamBufferOverflow(UnexpectedModelBehavior):
    """The frame decoder's carry-over buffer grew past the configured `max_buffer_size`."""


class ModelAPIError(UnillmError):
    """Raised when a model provider API request fails."""

    model_name: str
    """The name of the model associated with the error."""

    def __init__(self, model_name: str, message: str):
        self.model_name = model_name
        super().__init__(message)


class ModelHTTPError(ModelAPIError):
    """Raised when a model provider response has a status code of 4xx or 5xx."""

    status_code: int
    """The HTTP status code returned by the API."""

    body: object | None
    """The body of the response, if available."""

    def __init__(self, status_code: int, model_name: str, body: object | None = None):
        self.status_code = status_code
        self.body = body
        message = f'status_code: {status_code}, model_name: {model_name}, body: {body}'
        super().__init__(model_name=model_name, message=message)


class StreamInterrupted(UnillmError):
    """Base class for streams stopped by their `RequestContext` rather than by the provider."""


class StreamCancelled(StreamInterrupted):
    """The stream was cancelled via `RequestContext.cancel()`."""

    def __init__(self, message: str = 'Stream cancelled'):
        super().__init__(message)


class StreamTimeout(StreamInterrupted):
    """The stream's `RequestContext` deadline passed before the stream completed."""

    timeout: float | None
    """The timeout in seconds that was configured, if known."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        if timeout is None:
            message = 'Stream deadline exceeded'
        else:
            message = f'Stream deadline exceeded after {timeout:g}s'
        super().__init__(message)
