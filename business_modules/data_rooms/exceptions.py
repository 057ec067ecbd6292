"""
Data Room Exceptions

Custom exceptions for the data room sharing module.
"""


class DataRoomError(Exception):
    """Base exception for data room errors"""
    pass


class PersistenceError(DataRoomError):
    """Raised when the table backend rejects or fails an operation"""
    pass


class PersistenceUnavailable(PersistenceError):
    """Raised when the table backend cannot be reached at all"""
    pass


class ConditionalCheckFailed(PersistenceError):
    """Raised when a conditional write finds its condition violated"""
    pass


class LinkNotFound(DataRoomError):
    """Raised when a shared link cannot be resolved"""
    pass


class NdaTemplateNotFound(DataRoomError):
    """Raised when no NDA template exists for a room"""
    pass


class SignatureNotFound(DataRoomError):
    """Raised when an NDA signature cannot be found"""
    pass


class AccessGrantError(DataRoomError):
    """
    Raised when an access grant cannot be issued or redeemed.

    Carries a client-actionable reason code and the HTTP status it maps to.
    """

    def __init__(self, reason: str, message: str = '', status_code: int = 403, **extra):
        self.reason = reason
        self.status_code = status_code
        self.extra = extra
        super().__init__(message or reason)


class ContentUnavailable(DataRoomError):
    """Raised when no content URL can be produced for a document"""
    pass
