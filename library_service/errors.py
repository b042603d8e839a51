"""
Error taxonomy shared by the loan engine, the catalog and the HTTP layer.

Each error carries the HTTP status the API answers with; the exception
handler in endpoints.py renders any LibraryError as {"detail": message}.
"""


class LibraryError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    """Malformed input, e.g. a non-positive id or a bad ISBN."""

    status_code = 400


class PermissionDenied(LibraryError):
    status_code = 403


class NotFound(LibraryError):
    """A book, member, loan, category or user id does not resolve."""

    status_code = 404


class BookUnavailable(LibraryError):
    """Borrow attempted on a book that already has an open loan."""

    status_code = 409


class AlreadyReturned(LibraryError):
    """Return attempted on a closed loan."""

    status_code = 409


class Conflict(LibraryError):
    """A unique value (email, ISBN, username, category name) is taken."""

    status_code = 409
