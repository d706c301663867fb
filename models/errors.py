"""
Error hierarchy.

Caller input errors are rejected before any state mutation. Collaborator
failures are caught where the collaborator is called and turned into a
localized reply. Nothing here is raised for "session not found": the
store fabricates a fresh session instead.
"""
from __future__ import annotations


class VentureGuideError(Exception):
    """Base exception for all domain errors."""


class InvalidTurnError(VentureGuideError):
    """The request itself is malformed (missing id, bad selection index, ...)."""

    def __init__(self, message: str, field: str = ""):
        self.field = field
        super().__init__(message)


class UnknownContextKeyError(VentureGuideError, ValueError):
    """A context merge carried keys outside the session context schema."""

    def __init__(self, keys: list[str]):
        self.keys = sorted(keys)
        super().__init__(f"Unknown context keys: {', '.join(self.keys)}")


class AdvisoryProviderError(VentureGuideError):
    """The text-generation provider failed, timed out, or returned unusable output."""

    def __init__(self, message: str, operation: str = "", retryable: bool = False):
        self.operation = operation
        self.retryable = retryable
        super().__init__(message)


class DocumentExtractionError(VentureGuideError):
    """An uploaded document could not be read or contained no text."""
