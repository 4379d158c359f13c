"""wikiportable - Portable personal wiki with automatic JSON backups."""

__version__ = "0.1.0"

from wikiportable.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    parse_config_string,
    format_config,
    create_default_config,
)
from wikiportable.errors import (
    WikiError,
    InvalidPayloadError,
    NotFoundError,
    CorruptDataError,
    IOFailureError,
    EXIT_SUCCESS,
    EXIT_CONFIG_ERROR,
    EXIT_LOCK_ERROR,
    EXIT_NOT_FOUND,
    EXIT_CORRUPT_DATA,
    EXIT_INVALID_PAYLOAD,
    EXIT_IO_FAILURE,
)
from wikiportable.lock import LockManager, LockError
from wikiportable.logger import (
    LoggingError,
    setup_logging,
)
from wikiportable.retention import (
    RetentionManager,
    RetentionResult,
)
from wikiportable.backups import (
    BackupKind,
    BackupManager,
    BackupRecord,
)
from wikiportable.store import EntryStore, WriteResult
from wikiportable.restore import RestoreEngine
from wikiportable.merge import IdAllocator, MergeEngine, MergeResult
from wikiportable.service import WikiService

__all__ = [
    "Configuration",
    "ConfigurationError",
    "ValidationError",
    "parse_config",
    "parse_config_string",
    "format_config",
    "create_default_config",
    "WikiError",
    "InvalidPayloadError",
    "NotFoundError",
    "CorruptDataError",
    "IOFailureError",
    "EXIT_SUCCESS",
    "EXIT_CONFIG_ERROR",
    "EXIT_LOCK_ERROR",
    "EXIT_NOT_FOUND",
    "EXIT_CORRUPT_DATA",
    "EXIT_INVALID_PAYLOAD",
    "EXIT_IO_FAILURE",
    "LockManager",
    "LockError",
    "LoggingError",
    "setup_logging",
    "RetentionManager",
    "RetentionResult",
    "BackupKind",
    "BackupManager",
    "BackupRecord",
    "EntryStore",
    "WriteResult",
    "RestoreEngine",
    "IdAllocator",
    "MergeEngine",
    "MergeResult",
    "WikiService",
]
