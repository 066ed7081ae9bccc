"""Exception hierarchy shared across the knowledge capture workflow."""

from __future__ import annotations


class KnowledgeSyncError(RuntimeError):
    """Base class for errors raised by this package."""


class SetupValidationError(KnowledgeSyncError, ValueError):
    """Raised when the interview setup form is incomplete."""

    def __init__(self, missing_fields: list[str]) -> None:
        self.missing_fields = list(missing_fields)
        super().__init__(
            "Missing required setup fields: " + ", ".join(self.missing_fields)
        )


class InterviewStateError(KnowledgeSyncError):
    """Raised when an operation is not allowed in the current state."""


class FinalizationError(KnowledgeSyncError):
    """Raised when a session could not be turned into a stored article.

    The orchestrator stays in a retryable state when this is raised.
    """


class StorageError(KnowledgeSyncError):
    """Raised when a collection cannot be read or written."""


class StorageQuotaExceededError(StorageError):
    """Raised when a write would exceed the configured storage quota."""


class MalformedResponseError(KnowledgeSyncError):
    """Raised when a model reply cannot be parsed into the expected shape."""


class CorruptCollectionError(StorageError):
    """Raised when a stored collection exists but cannot be decoded."""
