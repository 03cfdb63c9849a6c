"""Exception types raised by docqa."""

from __future__ import annotations


class DocQAError(Exception):
    """Base class for all docqa errors."""


class ValidationError(DocQAError, ValueError):
    """Input rejected before any state was changed."""


class DimensionMismatchError(ValidationError):
    """Two vectors that must share a dimensionality do not."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vectors must have the same length (expected {expected}, got {actual})")
        self.expected = expected
        self.actual = actual


class ExtractionError(DocQAError):
    """A file could not be turned into text."""


class EmbeddingServiceError(DocQAError):
    """The embedding provider failed."""


class GenerationServiceError(DocQAError):
    """The text-generation provider failed."""


class GenerationCancelled(DocQAError):
    """A generation call was aborted through its cancellation signal.

    This is a terminal outcome, not a failure.
    """


class PersistenceError(DocQAError):
    """The persistence collaborator failed."""


class SchemaMismatchError(PersistenceError):
    """Stored data does not match the schema this version can read."""
