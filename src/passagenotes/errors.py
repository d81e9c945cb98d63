"""Exception hierarchy for the passage annotation engine.

None of these escape to the host application: the engine and the
persistence layer catch them at their boundaries and log.
"""

from __future__ import annotations


class PassageNotesError(Exception):
    """Base class for all passage annotation errors."""


class InvalidPathError(PassageNotesError, LookupError):
    """A node path does not resolve inside the current tree."""


class InvalidRangeError(PassageNotesError, ValueError):
    """A range or selection cannot be applied to the current tree."""


class NotAnAnnotationError(PassageNotesError, ValueError):
    """The addressed node exists but is not an annotation span."""


class StorageError(PassageNotesError):
    """A durable or recovery storage operation failed."""


class StorageQuotaError(StorageError):
    """The storage backend refused a write because it is full."""
