"""Exceptions raised by the library handlers.

Each class carries the HTTP status the API answers with, so handlers stay
free of any web framework imports.
"""


class LibraryError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    """Missing or malformed input."""

    status_code = 400


class BadRequestError(LibraryError):
    """The request is well formed but the document is in the wrong state."""

    status_code = 400


class UnauthorizedError(LibraryError):
    """No session or an invalid one."""

    status_code = 401


class ForbiddenError(LibraryError):
    """Authenticated, but not the owner and not privileged enough."""

    status_code = 403


class NotFoundError(LibraryError):
    status_code = 404


class ConflictError(LibraryError):
    """Duplicate reservation, review or double borrow."""

    status_code = 400


class EmailAlreadyRegistered(ConflictError):
    status_code = 409
