"""Exception hierarchy for the assistant core."""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for all assistant errors."""


class ValidationError(AssistantError):
    """A request is missing something it needs before it can be issued."""


class ProviderError(AssistantError):
    """The model provider call failed (network, auth, rate limit)."""


class EmptyResponseError(AssistantError):
    """The model provider returned no usable text."""


class ParseError(AssistantError):
    """A structured model reply could not be parsed, even after repair."""

    def __init__(self, message: str, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


class InvalidOperatorError(AssistantError):
    """A trigger condition uses an operator outside the supported set."""

    def __init__(self, operator: str):
        super().__init__(f"Unsupported comparison operator: {operator!r}")
        self.operator = operator


class CronExpressionError(AssistantError):
    """A cron expression is not a valid 5 or 6 field expression."""
