class DatabaseInitError(RuntimeError):
    """Raised when the ledger database cannot be opened or migrated."""


class ValidationError(ValueError):
    """Raised when a request payload breaks a ledger rule."""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(LookupError):
    """Raised when a category or transaction id does not exist."""


class StorageError(RuntimeError):
    """Raised when the local offline store fails to read or write."""


class SyncError(RuntimeError):
    """Raised when a call to the remote ledger API fails."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code
