"""Configuration management for wikiportable.

This module provides dataclasses for configuration and functions for
parsing/formatting TOML configuration files. Every setting has a default,
so a missing configuration file simply means "use the defaults".

Relative paths are resolved against the directory holding the
configuration file, which keeps a wiki folder portable: copy the folder
to another machine and the data, backups and logs move with it.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import tomllib


class ConfigurationError(Exception):
    """Raised when configuration file is unreadable or malformed."""
    pass


class ValidationError(Exception):
    """Raised when configuration values have invalid types."""
    pass


DEFAULT_DATA_FILE = "wiki_data.json"
DEFAULT_MAX_BACKUPS = 30
DEFAULT_PORT = 3000
DEFAULT_TITLE_SUFFIX = " (imported)"

# Name of the lock file kept beside the data file
LOCK_FILE_NAME = ".wiki.lock"


@dataclass
class StorageConfig:
    """Where the wiki data and its backups live."""
    data_dir: Path = field(default_factory=lambda: Path("data"))
    data_file: str = DEFAULT_DATA_FILE
    backup_dir: Path = field(default_factory=lambda: Path("backups"))
    atomic_writes: bool = False  # write to a temp file and rename into place
    seed_on_start: bool = True  # create a welcome entry when no data file exists
    lock_timeout_seconds: int = 5

    @property
    def data_path(self) -> Path:
        """Full path of the JSON store file."""
        return self.data_dir / self.data_file

    @property
    def lock_path(self) -> Path:
        """Full path of the single-writer lock file."""
        return self.data_dir / LOCK_FILE_NAME


@dataclass
class RetentionConfig:
    """Configuration for backup retention."""
    max_backups: int = DEFAULT_MAX_BACKUPS


@dataclass
class ServerConfig:
    """Configuration for the HTTP API server."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    max_content_mb: int = 50  # large pages with embedded images
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def max_content_bytes(self) -> int:
        """Return the request body limit in bytes for Flask's MAX_CONTENT_LENGTH."""
        return self.max_content_mb * 1024 * 1024


@dataclass
class MergeConfig:
    """Configuration for merging a backup into the current store."""
    title_suffix: str = DEFAULT_TITLE_SUFFIX


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"  # "DEBUG", "INFO", "WARNING", "ERROR"
    log_file: Path = field(default_factory=lambda: Path("logs/wikiportable.log"))
    error_log_file: Path = field(default_factory=lambda: Path("logs/wikiportable.err"))
    log_max_size_mb: int = 10  # Maximum log file size in MB before rotation
    log_backup_count: int = 5  # Number of rotated log files to keep

    @property
    def log_max_bytes(self) -> int:
        """Return max size in bytes for use with RotatingFileHandler."""
        return self.log_max_size_mb * 1024 * 1024


@dataclass
class Configuration:
    """Main configuration for wikiportable."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def resolve_paths(self, base_dir: Path) -> "Configuration":
        """
        Anchor every relative path in this configuration at base_dir.

        Absolute paths are left untouched. Returns self for chaining.
        """
        base_dir = Path(base_dir)
        self.storage.data_dir = _anchor(self.storage.data_dir, base_dir)
        self.storage.backup_dir = _anchor(self.storage.backup_dir, base_dir)
        self.logging.log_file = _anchor(self.logging.log_file, base_dir)
        self.logging.error_log_file = _anchor(self.logging.error_log_file, base_dir)
        return self


# Default config file, looked up in the current directory
DEFAULT_CONFIG_PATH = Path("wikiportable.toml")


def _anchor(path: Path, base_dir: Path) -> Path:
    path = Path(path).expanduser()
    if path.is_absolute():
        return path
    return base_dir / path


def _validate_type(value: Any, expected_type: type, key: str) -> None:
    """Validate that a value has the expected type."""
    # bool is a subclass of int; a flag is never a valid count or port
    if expected_type is int and isinstance(value, bool):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected int, got bool"
        )
    if not isinstance(value, expected_type):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected {expected_type.__name__}, "
            f"got {type(value).__name__}"
        )


def _validate_positive(value: int, key: str) -> None:
    if value < 1:
        raise ValidationError(f"Key '{key}' must be at least 1, got {value}")


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValidationError(
            f"Section '{name}' has invalid type: expected table, "
            f"got {type(section).__name__}"
        )
    return section


def _parse_storage_config(data: Dict[str, Any]) -> StorageConfig:
    """Parse storage configuration from dict."""
    storage_data = _section(data, "storage")

    data_dir = storage_data.get("data_dir", "data")
    _validate_type(data_dir, str, "storage.data_dir")

    data_file = storage_data.get("data_file", DEFAULT_DATA_FILE)
    _validate_type(data_file, str, "storage.data_file")
    if not data_file or Path(data_file).name != data_file:
        raise ValidationError(
            f"Key 'storage.data_file' must be a plain file name, got '{data_file}'"
        )

    backup_dir = storage_data.get("backup_dir", "backups")
    _validate_type(backup_dir, str, "storage.backup_dir")

    atomic_writes = storage_data.get("atomic_writes", False)
    _validate_type(atomic_writes, bool, "storage.atomic_writes")

    seed_on_start = storage_data.get("seed_on_start", True)
    _validate_type(seed_on_start, bool, "storage.seed_on_start")

    lock_timeout = storage_data.get("lock_timeout_seconds", 5)
    _validate_type(lock_timeout, int, "storage.lock_timeout_seconds")

    return StorageConfig(
        data_dir=Path(data_dir),
        data_file=data_file,
        backup_dir=Path(backup_dir),
        atomic_writes=atomic_writes,
        seed_on_start=seed_on_start,
        lock_timeout_seconds=lock_timeout,
    )


def _parse_retention_config(data: Dict[str, Any]) -> RetentionConfig:
    """Parse retention configuration from dict."""
    retention_data = _section(data, "retention")

    max_backups = retention_data.get("max_backups", DEFAULT_MAX_BACKUPS)
    _validate_type(max_backups, int, "retention.max_backups")
    _validate_positive(max_backups, "retention.max_backups")

    return RetentionConfig(max_backups=max_backups)


def _parse_server_config(data: Dict[str, Any]) -> ServerConfig:
    """Parse server configuration from dict."""
    server_data = _section(data, "server")

    host = server_data.get("host", "127.0.0.1")
    _validate_type(host, str, "server.host")

    port = server_data.get("port", DEFAULT_PORT)
    _validate_type(port, int, "server.port")

    max_content_mb = server_data.get("max_content_mb", 50)
    _validate_type(max_content_mb, int, "server.max_content_mb")
    _validate_positive(max_content_mb, "server.max_content_mb")

    cors_origins = server_data.get("cors_origins", ["*"])
    _validate_type(cors_origins, list, "server.cors_origins")
    for i, origin in enumerate(cors_origins):
        _validate_type(origin, str, f"server.cors_origins[{i}]")

    return ServerConfig(
        host=host,
        port=port,
        max_content_mb=max_content_mb,
        cors_origins=cors_origins,
    )


def _parse_merge_config(data: Dict[str, Any]) -> MergeConfig:
    """Parse merge configuration from dict."""
    merge_data = _section(data, "merge")

    title_suffix = merge_data.get("title_suffix", DEFAULT_TITLE_SUFFIX)
    _validate_type(title_suffix, str, "merge.title_suffix")

    return MergeConfig(title_suffix=title_suffix)


def _parse_logging_config(data: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration from dict."""
    logging_data = _section(data, "logging")

    level = logging_data.get("level", "INFO")
    _validate_type(level, str, "logging.level")

    log_file = logging_data.get("log_file", "logs/wikiportable.log")
    _validate_type(log_file, str, "logging.log_file")

    error_log_file = logging_data.get("error_log_file", "logs/wikiportable.err")
    _validate_type(error_log_file, str, "logging.error_log_file")

    log_max_size_mb = logging_data.get("log_max_size_mb", 10)
    _validate_type(log_max_size_mb, int, "logging.log_max_size_mb")

    log_backup_count = logging_data.get("log_backup_count", 5)
    _validate_type(log_backup_count, int, "logging.log_backup_count")

    return LoggingConfig(
        level=level,
        log_file=Path(log_file),
        error_log_file=Path(error_log_file),
        log_max_size_mb=log_max_size_mb,
        log_backup_count=log_backup_count,
    )


def parse_config_string(toml_content: str) -> Configuration:
    """
    Parse TOML string into Configuration object.

    Paths are returned exactly as written; see Configuration.resolve_paths.

    Args:
        toml_content: TOML formatted string

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If the TOML is malformed
        ValidationError: If a value has the wrong type or range
    """
    try:
        data = tomllib.loads(toml_content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML format: {e}")

    return Configuration(
        storage=_parse_storage_config(data),
        retention=_parse_retention_config(data),
        server=_parse_server_config(data),
        merge=_parse_merge_config(data),
        logging=_parse_logging_config(data),
    )


def parse_config(
    config_path: Optional[Path] = None,
    missing_ok: bool = False,
) -> Configuration:
    """
    Parse TOML configuration file into Configuration object.

    Relative paths in the result are anchored at the config file's directory.

    Args:
        config_path: Path to config file. Defaults to ./wikiportable.toml
        missing_ok: Return the default configuration (anchored at the
            would-be config directory) instead of failing when the file
            does not exist

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If file doesn't exist (and missing_ok is False)
            or cannot be read
        ValidationError: If value has wrong type
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_path = Path(config_path).expanduser().absolute()
    base_dir = config_path.parent

    if not config_path.exists():
        if missing_ok:
            return Configuration().resolve_paths(base_dir)
        raise ConfigurationError(
            f"Configuration file not found: {config_path}"
        )

    try:
        content = config_path.read_text(encoding="utf-8")
    except PermissionError:
        raise ConfigurationError(
            f"Permission denied reading configuration file: {config_path}"
        )
    except OSError as e:
        raise ConfigurationError(
            f"Error reading configuration file {config_path}: {e}"
        )

    return parse_config_string(content).resolve_paths(base_dir)


_TOML_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


def _escape_toml_string(s: str) -> str:
    """Escape a string for TOML basic string format."""
    out = []
    for ch in s:
        if ch in _TOML_ESCAPES:
            out.append(_TOML_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7f:
            # Other control characters are not allowed raw
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return "".join(out)


def _toml_bool(value: bool) -> str:
    return "true" if value else "false"


def format_config(config: Configuration) -> str:
    """
    Format Configuration object back to TOML string.

    Used for round-trip testing and config generation.

    Args:
        config: Configuration object to format

    Returns:
        TOML formatted string
    """
    lines = []

    lines.append("[storage]")
    lines.append(f'data_dir = "{_escape_toml_string(str(config.storage.data_dir))}"')
    lines.append(f'data_file = "{_escape_toml_string(config.storage.data_file)}"')
    lines.append(f'backup_dir = "{_escape_toml_string(str(config.storage.backup_dir))}"')
    lines.append(f"atomic_writes = {_toml_bool(config.storage.atomic_writes)}")
    lines.append(f"seed_on_start = {_toml_bool(config.storage.seed_on_start)}")
    lines.append(f"lock_timeout_seconds = {config.storage.lock_timeout_seconds}")
    lines.append("")

    lines.append("[retention]")
    lines.append(f"max_backups = {config.retention.max_backups}")
    lines.append("")

    lines.append("[server]")
    lines.append(f'host = "{_escape_toml_string(config.server.host)}"')
    lines.append(f"port = {config.server.port}")
    lines.append(f"max_content_mb = {config.server.max_content_mb}")
    if config.server.cors_origins:
        lines.append("cors_origins = [")
        for origin in config.server.cors_origins:
            lines.append(f'    "{_escape_toml_string(origin)}",')
        lines.append("]")
    else:
        lines.append("cors_origins = []")
    lines.append("")

    lines.append("[merge]")
    lines.append(f'title_suffix = "{_escape_toml_string(config.merge.title_suffix)}"')
    lines.append("")

    lines.append("[logging]")
    lines.append(f'level = "{_escape_toml_string(config.logging.level)}"')
    lines.append(f'log_file = "{_escape_toml_string(str(config.logging.log_file))}"')
    lines.append(f'error_log_file = "{_escape_toml_string(str(config.logging.error_log_file))}"')
    lines.append(f"log_max_size_mb = {config.logging.log_max_size_mb}")
    lines.append(f"log_backup_count = {config.logging.log_backup_count}")

    return "\n".join(lines)


def create_default_config() -> str:
    """
    Generate default configuration TOML for `wikiportable init`.

    Returns:
        TOML formatted string with default configuration
    """
    return f'''# wikiportable configuration file
# Relative paths are resolved against the folder containing this file.

[storage]
# Folder holding the wiki data file
data_dir = "data"
data_file = "{DEFAULT_DATA_FILE}"

# Folder holding timestamped backups (auto_, manual_, restore_safety_)
backup_dir = "backups"

# Write the data file via a temporary file and rename it into place
atomic_writes = false

# Create a welcome article when no data file exists yet
seed_on_start = true

# Seconds to wait for another writer to release the data file
lock_timeout_seconds = 5

[retention]
# Oldest backups beyond this count are deleted after each new backup
max_backups = {DEFAULT_MAX_BACKUPS}

[server]
host = "127.0.0.1"
port = {DEFAULT_PORT}
# Maximum request body size (pages may embed images)
max_content_mb = 50
# Origins allowed to call the API from a browser ("*" allows any)
cors_origins = ["*"]

[merge]
# Appended to imported titles that clash with an existing article
title_suffix = "{DEFAULT_TITLE_SUFFIX}"

[logging]
# Log level: DEBUG, INFO, WARNING, ERROR
level = "INFO"
log_file = "logs/wikiportable.log"
error_log_file = "logs/wikiportable.err"
# Log rotation settings
log_max_size_mb = 10
log_backup_count = 5
'''
