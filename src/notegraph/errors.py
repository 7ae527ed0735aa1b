"""Exception types shared across notegraph.

Single-document operations raise these to their caller. Multi-document scans
catch them at the document boundary and turn them into ``OperationError``
records instead (see ``models.OperationResult``).
"""

from __future__ import annotations

from typing import Any


class NotegraphError(Exception):
    """Base class for all notegraph errors."""

    code = "NOTEGRAPH_ERROR"

    def __init__(self, message: str, *, path: str | None = None) -> None:
        self.message = message
        self.path = path
        super().__init__(message)


class NoteNotFoundError(NotegraphError):
    """Raised when a note does not exist."""

    code = "NOT_FOUND"

    def __init__(self, path: str) -> None:
        super().__init__(f"Note not found: {path}", path=path)


class NoteExistsError(NotegraphError):
    """Raised when a write would clobber an existing note."""

    code = "ALREADY_EXISTS"

    def __init__(self, path: str) -> None:
        super().__init__(f"Note already exists: {path}", path=path)


class InvalidPathError(NotegraphError):
    """Raised when a path cannot be mapped inside the vault root."""

    code = "INVALID_PATH"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f'Invalid path "{path}": {reason}', path=path)


class IOFailureError(NotegraphError):
    """Raised for read, write or permission failures on an existing path."""

    code = "IO_FAILURE"

    def __init__(self, path: str, operation: str, cause: BaseException) -> None:
        self.operation = operation
        super().__init__(f"Failed to {operation} {path}: {cause}", path=path)


class InvalidQueryError(NotegraphError):
    """Raised for an empty search query or an invalid regular expression."""

    code = "INVALID_QUERY"


class ConfigurationError(NotegraphError):
    """Raised when configuration values are missing or invalid."""

    code = "CONFIGURATION_ERROR"


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Render an exception as the ``error`` member of a failed envelope."""
    if isinstance(exc, NotegraphError):
        return {"code": exc.code, "message": exc.message}
    return {"code": "UNKNOWN_ERROR", "message": str(exc) or type(exc).__name__}
