"""Error types raised by dumpsync."""

from __future__ import annotations


class DumpsyncError(Exception):
    """Base exception for all dumpsync errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigLoadError(DumpsyncError):
    """Raised when the configuration file is missing or malformed."""


class AccessError(DumpsyncError):
    """Raised when the store cannot be reached or an operation is not permitted."""


class UsageError(DumpsyncError):
    """Raised for invalid arguments, before any network call is made."""


class InvalidDatabaseName(UsageError):
    pass


class InvalidPattern(UsageError):
    pass


class MalformedKey(DumpsyncError):
    """Raised when an object key does not decompose into database/backup/collection."""


class BackupNotFound(DumpsyncError):
    """Raised when no objects exist under the expected prefix."""


class TransferError(DumpsyncError):
    """Raised when a put, get, commit, list or local write fails.

    ``key`` names the object involved and ``index`` the position of the
    collection within an upload, when known.
    """

    def __init__(
        self,
        message: str,
        key: str | None = None,
        index: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.key = key
        self.index = index
