"""Error taxonomy shared by the library, accounts and service layers.

Each error carries the HTTP status the API answers with; the exception
handlers in ``api.py`` turn them into ``{"message": ...}`` bodies.
"""


class LibraryError(Exception):
    """Base class for expected, client-visible failures."""
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequest(LibraryError):
    """Missing or invalid input"""
    status_code = 400


class Conflict(LibraryError):
    """Book already borrowed, or a unique field already taken"""
    status_code = 400


class Forbidden(LibraryError):
    status_code = 403


class NotAuthenticated(Forbidden):
    """Missing, malformed or expired bearer token"""
    status_code = 401


class NotFound(LibraryError):
    status_code = 404


class PayloadTooLarge(LibraryError):
    status_code = 413


class ServerError(LibraryError):
    """Unexpected persistence failure"""
    status_code = 500


class UpstreamFailure(LibraryError):
    """The external catalog call failed or returned malformed data"""
    status_code = 502

    def __init__(self, message: str, details: str = "") -> None:
        super().__init__(message)
        self.details = details
