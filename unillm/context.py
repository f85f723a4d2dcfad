from __future__ import annotations as _annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

__all__ = ('RequestContext',)


@dataclass
class RequestContext:
    """Cooperative cancellation and deadline token for one request.

    The stream drivers check the context between chunk reads, never while a chunk is being decoded.
    `cancel()` may be called from any thread.

    ```python
    from unillm import RequestContext

    ctx = RequestContext().with_timeout(30)
    ctx.set_metadata('request_id', 'abc-123')
    ```
    """

    deadline: float | None = None
    """Deadline on the `clock`'s timeline, or `None` for no deadline."""

    timeout: float | None = None
    """The timeout in seconds most recently passed to `with_timeout`."""

    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    """Monotonic clock used for deadlines, replaceable in tests."""

    metadata: dict[str, Any] = field(default_factory=dict)
    """Arbitrary caller-supplied values carried alongside the request."""

    _cancelled: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def with_timeout(self, seconds: float) -> RequestContext:
        """Set the deadline to `seconds` from now, replacing any previous deadline."""
        self.timeout = seconds
        self.deadline = self.clock() + seconds
        return self

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and self.clock() >= self.deadline

    @property
    def done(self) -> bool:
        """Whether the request has been cancelled or its deadline has passed."""
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), or `None` if there is no deadline."""
        if self.deadline is None:
            return None
        return max(self.deadline - self.clock(), 0.0)

    def set_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)
