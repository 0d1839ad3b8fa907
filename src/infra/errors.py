"""Custom exception hierarchy for the coordinator integrity engine.

All application-specific exceptions inherit from SwarmIntegrityError,
which carries an error code for structured tool results.
"""

from __future__ import annotations


class SwarmIntegrityError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class EventLogError(SwarmIntegrityError):
    """Errors writing or reading the append-only event log."""

    def __init__(self, message: str, *, code: str = "EVENT_LOG_ERROR") -> None:
        super().__init__(message, code=code)


class ContextError(SwarmIntegrityError):
    """Invalid coordinator context activation."""

    def __init__(self, message: str, *, code: str = "CONTEXT_ERROR") -> None:
        super().__init__(message, code=code)


class ReviewError(SwarmIntegrityError):
    """Caller contract violations in the review gate."""

    def __init__(self, message: str, *, code: str = "REVIEW_ERROR") -> None:
        super().__init__(message, code=code)


class ContinuityError(SwarmIntegrityError):
    """Errors in the compaction continuity pipeline."""

    def __init__(self, message: str, *, code: str = "CONTINUITY_ERROR") -> None:
        super().__init__(message, code=code)


class CollaboratorError(ContinuityError):
    """An external collaborator (cell store, health probe, history) failed."""

    def __init__(self, message: str, *, code: str = "COLLABORATOR_ERROR") -> None:
        super().__init__(message, code=code)


class ProjectDetectionError(CollaboratorError):
    """The project key for the current session could not be resolved."""

    def __init__(self, message: str = "Could not detect project path") -> None:
        super().__init__(message, code="PROJECT_UNDETECTED")
