from __future__ import annotations as _annotations

from dataclasses import dataclass, field

from . import _utils

__all__ = 'InputTokens', 'OutputTokens', 'NormalizedUsage'


@dataclass(repr=False)
class InputTokens:
    """Prompt-side token counts reported by the provider."""

    total: int = 0
    """Total number of input tokens, including any cached tokens."""

    cache_read: int | None = None
    """Number of input tokens served from the provider's prompt cache, if reported."""

    cache_write: int | None = None
    """Number of input tokens written to the provider's prompt cache, if reported."""

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False)
class OutputTokens:
    """Completion-side token counts reported by the provider."""

    total: int = 0
    """Total number of output tokens."""

    reasoning: int | None = None
    """Number of output tokens spent on reasoning, if reported."""

    __repr__ = _utils.dataclasses_no_defaults_repr


@dataclass(repr=False)
class NormalizedUsage:
    """Token usage for one streamed response, in a provider-independent shape.

    Providers report cumulative totals, so a stream's usage is *replaced* by every usage-bearing record
    rather than added to: the last value received is authoritative.
    """

    input_tokens: InputTokens = field(default_factory=InputTokens)
    """Prompt-side token counts."""

    output_tokens: OutputTokens = field(default_factory=OutputTokens)
    """Completion-side token counts."""

    @property
    def total_tokens(self) -> int:
        """Sum of input and output tokens."""
        return self.input_tokens.total + self.output_tokens.total

    def has_values(self) -> bool:
        """Whether any token counts have been reported."""
        return bool(self.total_tokens or self.input_tokens.cache_read or self.input_tokens.cache_write)

    __repr__ = _utils.dataclasses_no_defaults_repr
