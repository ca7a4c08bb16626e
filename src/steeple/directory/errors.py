"""Directory service errors.

The dispatcher maps each of these onto a distinct JSON-RPC error code,
so read-side and write-side failures stay separate types even where
they share a code today.
"""

from __future__ import annotations

from steeple.exceptions import SteepleError


class DirectoryError(SteepleError):
    """Base for read/write service failures that are safe to show callers."""


class ValidationError(DirectoryError):
    """Bad tool arguments or entity input."""


class ReadForbiddenError(DirectoryError):
    """Caller lacks the role for the requested view."""


class ReadNotFoundError(DirectoryError):
    """No matching row is visible to the caller."""


class WriteForbiddenError(DirectoryError):
    """Caller lacks the role to perform the write."""


class WriteNotFoundError(DirectoryError):
    """No matching row to write."""


class ConflictError(DirectoryError):
    """The supplied updated_at no longer matches the stored row."""
