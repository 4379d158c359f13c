"""Logging configuration for wikiportable.

This module provides logging setup and utility functions for the wiki
server. Supports DEBUG, INFO, WARNING and ERROR log levels with separate
log and error files, automatic log rotation with gzip compression, and
structured (JSON) log entries with error codes so that conditions such as
an empty overwrite of a populated wiki can be found again later.
"""

import gzip
import json
import logging
import os
import shutil
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from wikiportable.config import LoggingConfig


# Logger name for the wikiportable package
LOGGER_NAME = "wikiportable"

# Default rotation settings
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

# Valid log levels
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


class ErrorCode(Enum):
    """
    Error codes for structured logging and API error bodies.

    Each error code maps to a specific error category and has associated
    troubleshooting guidance.
    """
    # Store errors (1xxx)
    STORE_CORRUPT = "E1001"
    STORE_INVALID_PAYLOAD = "E1002"
    STORE_EMPTY_OVERWRITE = "E1003"
    STORE_WRITE_FAILED = "E1004"
    STORE_READ_FAILED = "E1005"

    # Backup errors (2xxx)
    BACKUP_NOT_FOUND = "E2001"
    BACKUP_CORRUPT = "E2002"
    BACKUP_SNAPSHOT_FAILED = "E2003"
    BACKUP_DELETE_FAILED = "E2004"
    BACKUP_PRUNE_FAILED = "E2005"
    BACKUP_NO_DATA_FILE = "E2006"

    # Restore errors (3xxx)
    RESTORE_FAILED = "E3001"

    # Merge errors (4xxx)
    MERGE_FAILED = "E4001"

    # Configuration errors (5xxx)
    CONFIG_NOT_FOUND = "E5001"
    CONFIG_INVALID = "E5002"
    CONFIG_PARSE_ERROR = "E5003"

    # Lock errors (6xxx)
    LOCK_HELD = "E6001"
    LOCK_ACQUIRE_FAILED = "E6002"

    # General errors (0xxx)
    UNKNOWN_ERROR = "E0001"
    INTERNAL_ERROR = "E0002"


# Troubleshooting guidance for each error code
ERROR_GUIDANCE: Dict[ErrorCode, str] = {
    ErrorCode.STORE_CORRUPT: "The wiki data file is not a valid JSON array. Restore it from a backup.",
    ErrorCode.STORE_INVALID_PAYLOAD: "The data sent to the server was not a list of articles. Nothing was saved.",
    ErrorCode.STORE_EMPTY_OVERWRITE: "A populated wiki was overwritten with an empty one. If this was not intended, restore the latest auto_ backup.",
    ErrorCode.STORE_WRITE_FAILED: "The wiki data file could not be written. Check disk space and folder permissions.",
    ErrorCode.STORE_READ_FAILED: "The wiki data file could not be read. Check folder permissions.",

    ErrorCode.BACKUP_NOT_FOUND: "The requested backup does not exist. Refresh the backup list.",
    ErrorCode.BACKUP_CORRUPT: "The backup file is not valid JSON. Choose a different backup.",
    ErrorCode.BACKUP_SNAPSHOT_FAILED: "A backup could not be created. Check disk space and backup folder permissions.",
    ErrorCode.BACKUP_DELETE_FAILED: "A backup could not be deleted. Check backup folder permissions.",
    ErrorCode.BACKUP_PRUNE_FAILED: "An old backup could not be removed during cleanup. It will be retried after the next backup.",
    ErrorCode.BACKUP_NO_DATA_FILE: "There is no wiki data file yet, so there is nothing to back up.",

    ErrorCode.RESTORE_FAILED: "Restore failed. The previous state was saved as a restore_safety_ backup.",

    ErrorCode.MERGE_FAILED: "Merging the backup failed. The current wiki was not changed.",

    ErrorCode.CONFIG_NOT_FOUND: "No configuration file found. Run 'wikiportable init' to create one.",
    ErrorCode.CONFIG_INVALID: "The configuration file is invalid. Check the reported key.",
    ErrorCode.CONFIG_PARSE_ERROR: "Could not parse the configuration file. Check for TOML syntax errors.",

    ErrorCode.LOCK_HELD: "Another wikiportable process is writing the data file. Wait for it to finish.",
    ErrorCode.LOCK_ACQUIRE_FAILED: "Could not acquire the data file lock. Check folder permissions.",

    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Check the logs for more details.",
    ErrorCode.INTERNAL_ERROR: "An internal error occurred. Please report this issue.",
}


@dataclass
class StructuredLogEntry:
    """
    A structured log entry that can be parsed back from the log file.

    Fields:
    - timestamp: ISO 8601 formatted timestamp
    - level: Severity level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - error_code: Error code from ErrorCode enum (for errors/warnings)
    - message: Human-readable message
    - context: Additional context information
    - guidance: Troubleshooting guidance (for errors/warnings)
    """
    timestamp: str
    level: str
    message: str
    error_code: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    guidance: Optional[str] = None

    def to_json(self) -> str:
        """Serialize to JSON string for logging."""
        data = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(data, default=str, ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: str) -> "StructuredLogEntry":
        """Parse from JSON string."""
        data = json.loads(json_str)
        return cls(**data)

    @classmethod
    def create(
        cls,
        level: str,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> "StructuredLogEntry":
        """Create a structured log entry with automatic timestamp and guidance."""
        timestamp = datetime.now().isoformat()
        code_str = error_code.value if error_code else None
        guidance = ERROR_GUIDANCE.get(error_code) if error_code else None

        return cls(
            timestamp=timestamp,
            level=level,
            message=message,
            error_code=code_str,
            context=context,
            guidance=guidance,
        )


def get_error_guidance(error_code: ErrorCode) -> str:
    """Get troubleshooting guidance for an error code."""
    return ERROR_GUIDANCE.get(error_code, ERROR_GUIDANCE[ErrorCode.UNKNOWN_ERROR])


class LoggingError(Exception):
    """Raised when logging setup fails."""
    pass


class GzipRotatingFileHandler(RotatingFileHandler):
    """
    Rotating file handler that compresses rotated files with gzip.

    Rotated files are named with a .gz extension.
    """

    def rotation_filename(self, default_name: str) -> str:
        return default_name + ".gz"

    def rotate(self, source: str, dest: str) -> None:
        """
        Rotate and compress the log file.

        Compresses the source file using gzip and writes to dest.
        The source file is removed after successful compression.
        """
        if not os.path.exists(source):
            return

        try:
            with open(source, 'rb') as f_in:
                with gzip.open(dest, 'wb') as f_out:
                    shutil.copyfileobj(f_in, f_out)
            os.remove(source)
        except OSError:
            # If compression fails, fall back to simple rename
            if os.path.exists(source):
                fallback_dest = dest[:-3] if dest.endswith('.gz') else dest
                try:
                    os.rename(source, fallback_dest)
                except OSError:
                    pass  # Best effort - don't fail logging


def _ensure_log_directory(log_path: Path) -> None:
    """Ensure the parent directory for a log file exists."""
    log_dir = log_path.parent
    if not log_dir.exists():
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LoggingError(f"Failed to create log directory {log_dir}: {e}")


def _get_log_level(level_str: str) -> int:
    """Convert log level string to logging constant."""
    level_str = level_str.upper()
    if level_str not in VALID_LOG_LEVELS:
        raise LoggingError(
            f"Invalid log level '{level_str}'. Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )
    return getattr(logging, level_str)


def setup_logging(
    config: Optional[LoggingConfig] = None,
    log_file: Optional[Path] = None,
    error_log_file: Optional[Path] = None,
    level: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None,
    console: bool = True,
) -> logging.Logger:
    """
    Configure logging for wikiportable.

    Sets up logging with:
    - A rotating file handler for general logs (log_file)
    - A rotating file handler for error logs only (error_log_file)
    - Console output for immediate feedback (unless console is False)
    - Automatic gzip compression of rotated files

    Args:
        config: LoggingConfig object with settings. If provided, the path
            and level arguments are ignored.
        log_file: Path to main log file (used if config is None)
        error_log_file: Path to error log file (used if config is None)
        level: Log level string (used if config is None)
        max_bytes: Maximum log file size before rotation (default 10MB)
        backup_count: Number of rotated files to keep (default 5)
        console: Attach a console handler

    Returns:
        Configured logger instance

    Raises:
        LoggingError: If log directory cannot be created or level is invalid
    """
    if config is not None:
        log_file = config.log_file
        error_log_file = config.error_log_file
        level = config.level
        if max_bytes is None:
            max_bytes = config.log_max_bytes
        if backup_count is None:
            backup_count = config.log_backup_count
    else:
        if log_file is None:
            log_file = Path("logs/wikiportable.log")
        if error_log_file is None:
            error_log_file = Path("logs/wikiportable.err")
        if level is None:
            level = "INFO"
        if max_bytes is None:
            max_bytes = DEFAULT_MAX_BYTES
        if backup_count is None:
            backup_count = DEFAULT_BACKUP_COUNT

    log_file = Path(os.path.expanduser(str(log_file)))
    error_log_file = Path(os.path.expanduser(str(error_log_file)))

    _ensure_log_directory(log_file)
    _ensure_log_directory(error_log_file)

    log_level = _get_log_level(level)

    logger = logging.getLogger(LOGGER_NAME)

    # Close and drop any existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    logger.setLevel(logging.DEBUG)  # Allow all levels, handlers will filter

    detailed_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    file_handler = GzipRotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(detailed_formatter)
    logger.addHandler(file_handler)

    error_handler = GzipRotatingFileHandler(
        error_log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(detailed_formatter)
    logger.addHandler(error_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(detailed_formatter)
        logger.addHandler(console_handler)

    return logger


def log_structured(
    logger: logging.Logger,
    level: str,
    message: str,
    error_code: Optional[ErrorCode] = None,
    context: Optional[Dict[str, Any]] = None,
) -> StructuredLogEntry:
    """
    Log a structured entry as a JSON string.

    Args:
        logger: Logger instance
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        message: Human-readable message
        error_code: Optional error code for errors/warnings
        context: Optional additional context dictionary

    Returns:
        The StructuredLogEntry that was logged
    """
    entry = StructuredLogEntry.create(
        level=level,
        message=message,
        error_code=error_code,
        context=context,
    )

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.log(log_level, entry.to_json())

    return entry


def log_structured_error(
    logger: logging.Logger,
    message: str,
    error_code: ErrorCode,
    context: Optional[Dict[str, Any]] = None,
) -> StructuredLogEntry:
    """Log a structured error entry with error code and guidance."""
    return log_structured(
        logger=logger,
        level="ERROR",
        message=message,
        error_code=error_code,
        context=context,
    )


def log_structured_warning(
    logger: logging.Logger,
    message: str,
    error_code: Optional[ErrorCode] = None,
    context: Optional[Dict[str, Any]] = None,
) -> StructuredLogEntry:
    """Log a structured warning entry."""
    return log_structured(
        logger=logger,
        level="WARNING",
        message=message,
        error_code=error_code,
        context=context,
    )


def parse_structured_log(log_line: str) -> Optional[StructuredLogEntry]:
    """
    Parse a structured log entry from a log line.

    Extracts the JSON portion from a log line and parses it into
    a StructuredLogEntry. Returns None if parsing fails.
    """
    try:
        # Log format: "2025-01-07 10:30:00 - wikiportable.store - WARNING - {json}"
        json_start = log_line.find('{')
        if json_start == -1:
            return None

        json_str = log_line[json_start:]
        return StructuredLogEntry.from_json(json_str)
    except (json.JSONDecodeError, KeyError, TypeError):
        return None


def get_recent_errors(
    log_file: Path,
    max_entries: int = 10,
    levels: tuple = ("ERROR", "CRITICAL"),
) -> List[StructuredLogEntry]:
    """
    Get recent structured entries of the given levels from a log file.

    Args:
        log_file: Path to the log file
        max_entries: Maximum number of entries to return
        levels: Levels to include

    Returns:
        List of StructuredLogEntry objects in chronological order
    """
    errors: List[StructuredLogEntry] = []

    if not log_file.exists():
        return errors

    try:
        with open(log_file, 'r', encoding='utf-8') as f:
            lines = f.readlines()
    except OSError:
        return errors

    # Most recent first, stop once we have enough
    for line in reversed(lines):
        if len(errors) >= max_entries:
            break

        entry = parse_structured_log(line)
        if entry and entry.level in levels:
            errors.append(entry)

    return list(reversed(errors))


def map_exception_to_error_code(exception: Exception) -> ErrorCode:
    """
    Map an exception to an appropriate error code.

    Exceptions from this package carry their own code; everything else is
    mapped by type name and then by message content.
    """
    code = getattr(exception, "error_code", None)
    if isinstance(code, ErrorCode):
        return code

    exc_type = type(exception).__name__
    exc_msg = str(exception).lower()

    type_mappings = {
        "FileNotFoundError": ErrorCode.BACKUP_NOT_FOUND,
        "PermissionError": ErrorCode.STORE_WRITE_FAILED,
        "JSONDecodeError": ErrorCode.STORE_CORRUPT,
        "ConfigurationError": ErrorCode.CONFIG_INVALID,
        "ValidationError": ErrorCode.CONFIG_INVALID,
        "LockError": ErrorCode.LOCK_HELD,
    }

    if exc_type in type_mappings:
        return type_mappings[exc_type]

    if "no space" in exc_msg or "disk full" in exc_msg:
        return ErrorCode.STORE_WRITE_FAILED
    if "permission" in exc_msg:
        return ErrorCode.STORE_WRITE_FAILED
    if "not found" in exc_msg:
        return ErrorCode.BACKUP_NOT_FOUND
    if "lock" in exc_msg:
        return ErrorCode.LOCK_HELD
    if "config" in exc_msg:
        return ErrorCode.CONFIG_INVALID

    return ErrorCode.UNKNOWN_ERROR
