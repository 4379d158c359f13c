"""Error taxonomy for wikiportable.

Every failure that can reach a caller is one of the classes below. Each
carries the HTTP status the API layer answers with, the exit code the CLI
returns, and an ErrorCode for structured logs.
"""

from typing import Optional

from wikiportable.logger import ErrorCode


# Exit codes shared by the CLI
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_LOCK_ERROR = 2
EXIT_NOT_FOUND = 3
EXIT_CORRUPT_DATA = 4
EXIT_INVALID_PAYLOAD = 5
EXIT_IO_FAILURE = 6


class WikiError(Exception):
    """Base exception for wiki store and backup errors."""

    status_code = 500
    exit_code = EXIT_IO_FAILURE
    default_error_code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code


class InvalidPayloadError(WikiError):
    """Raised when a client sends data that is not an array of entries."""

    status_code = 400
    exit_code = EXIT_INVALID_PAYLOAD
    default_error_code = ErrorCode.STORE_INVALID_PAYLOAD


class NotFoundError(WikiError):
    """Raised when a referenced backup (or the data file) does not exist."""

    status_code = 404
    exit_code = EXIT_NOT_FOUND
    default_error_code = ErrorCode.BACKUP_NOT_FOUND


class CorruptDataError(WikiError):
    """Raised when a file that should hold a JSON array does not parse."""

    status_code = 500
    exit_code = EXIT_CORRUPT_DATA
    default_error_code = ErrorCode.STORE_CORRUPT


class IOFailureError(WikiError):
    """Raised when a filesystem operation itself fails."""

    status_code = 500
    exit_code = EXIT_IO_FAILURE
    default_error_code = ErrorCode.STORE_WRITE_FAILED
