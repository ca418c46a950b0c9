"""Exception hierarchy for ledgerpipe.

Duplicates are not errors (they become skipped records) and crash orphans are
resolved by the recovery sweep, so neither has an exception type here.
"""

from __future__ import annotations


class LedgerPipeError(Exception):
    """Base class for all ledgerpipe errors."""

    pass


class PayloadError(LedgerPipeError):
    """The whole statement payload is unreadable; no session is created."""

    pass


class ValidationError(LedgerPipeError):
    """A single input row (or request argument) failed validation."""

    def __init__(self, message: str, row: int | None = None):
        self.row = row
        self.message = message
        prefix = f"Row {row}: " if row is not None else ""
        super().__init__(f"{prefix}{message}")


class CollaboratorUnavailable(LedgerPipeError):
    """An enrichment backend cannot be reached at all."""

    def __init__(self, collaborator: str, cause: str):
        self.collaborator = collaborator
        self.cause = cause
        super().__init__(f"{collaborator} unavailable: {cause}")


class ConflictError(LedgerPipeError):
    """Operation requested against a session or run in the wrong state."""

    pass


class NotFoundError(LedgerPipeError):
    """Unknown import session, run or snapshot."""

    pass
