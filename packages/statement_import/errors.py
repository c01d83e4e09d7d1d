"""Exception hierarchy for the import pipeline.

Row-level problems are never exceptions; they are collected as
:class:`~statement_import.models.ParseError` values. The classes below cover
the remaining failure kinds:

- ``ValidationError``: a caller asked for something the session cannot do in
  its current state (no import type, incomplete review, empty selection). The
  session state is left untouched.
- ``StatementReadError`` and ``RepositoryError``: infrastructure failures.
  These are the only errors that move a session to the ``error`` phase.
- ``ClassificationServiceError``: the external classifier failed after
  retries. The classifier absorbs it and degrades affected rows to review.
- ``StaleResultError``: work finished after the session was reset.
"""

from __future__ import annotations


class StatementImportError(Exception):
    """Base class for all errors raised by ``statement_import``."""


class ValidationError(StatementImportError):
    pass


class PhaseError(ValidationError):
    """Raised when an operation is invoked from the wrong session phase."""

    def __init__(self, operation: str, phase: str, expected: tuple[str, ...]) -> None:
        self.operation = operation
        self.phase = phase
        self.expected = expected
        allowed = ", ".join(expected)
        super().__init__(f"{operation} is not allowed in phase {phase!r} (expected: {allowed})")


class InfrastructureError(StatementImportError):
    """Whole-session failure; recovery is a reset."""


class StatementReadError(InfrastructureError):
    pass


class RepositoryError(InfrastructureError):
    pass


class ClassificationServiceError(StatementImportError):
    pass


class StaleResultError(StatementImportError):
    pass


__all__ = [
    "ClassificationServiceError",
    "InfrastructureError",
    "PhaseError",
    "RepositoryError",
    "StaleResultError",
    "StatementImportError",
    "StatementReadError",
    "ValidationError",
]
