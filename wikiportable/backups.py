"""Backup manager for wikiportable.

This module provides the BackupManager class that creates, lists, prunes
and deletes timestamped copies of the wiki data file.

Backup files live in a single directory and are named
``{kind}_{YYYYMMDD_HHMMSS}.json`` where kind is ``auto`` (taken before
every save), ``manual`` (requested by the user) or ``restore_safety``
(taken before a restore). The file's modification time, not the name, is
the source of truth for ordering and retention.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import logging
import re
import shutil

from wikiportable.config import DEFAULT_MAX_BACKUPS
from wikiportable.errors import CorruptDataError, IOFailureError, NotFoundError
from wikiportable.logger import ErrorCode, log_structured_warning
from wikiportable.retention import RetentionManager, RetentionResult


logger = logging.getLogger(__name__)


class BackupKind(Enum):
    """Why a backup was taken; also the filename prefix."""
    AUTO = "auto"
    MANUAL = "manual"
    RESTORE_SAFETY = "restore_safety"


# Timestamp format embedded in backup filenames
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_FILENAME_RE = re.compile(
    r"^(?P<kind>auto|manual|restore_safety)_(?P<timestamp>\d{8}_\d{6})\.json$"
)


def parse_backup_filename(filename: str) -> Tuple[Optional[BackupKind], Optional[datetime]]:
    """
    Split a backup filename into its kind and timestamp.

    Returns (None, None) for names that do not follow the backup pattern.
    """
    match = _FILENAME_RE.match(filename)
    if match is None:
        return None, None
    try:
        timestamp = datetime.strptime(match.group("timestamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None, None
    return BackupKind(match.group("kind")), timestamp


@dataclass(frozen=True)
class BackupRecord:
    """Information about one backup file."""
    filename: str
    path: Path
    size: int
    created_at: datetime  # file modification time, local timezone
    entry_count: Optional[int]  # None when the file does not parse
    kind: Optional[BackupKind] = None
    timestamp: Optional[datetime] = None  # parsed from the filename

    def to_dict(self) -> Dict[str, Any]:
        """Render the record the way the HTTP API reports it."""
        created_utc = self.created_at.astimezone(timezone.utc)
        count: Any = self.entry_count if self.entry_count is not None else "?"
        return {
            "filename": self.filename,
            "kind": self.kind.value if self.kind else None,
            "size": self.size,
            "count": count,
            "entryCount": count,
            "created": created_utc.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "createdLocal": self.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        }


def _count_entries(content: Any) -> int:
    return len(content) if isinstance(content, list) else 0


class BackupManager:
    """
    Creates and maintains timestamped snapshots of the wiki data file.
    """

    def __init__(
        self,
        source: Path,
        backup_dir: Path,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the backup manager.

        Args:
            source: Path to the wiki data file being backed up
            backup_dir: Directory that holds the backup files
            max_backups: Retention limit applied by prune()
            clock: Source of the local time used in backup filenames
        """
        self.source = Path(source)
        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups
        self._clock = clock

    def _generate_timestamp(self) -> str:
        """Generate the YYYYMMDD_HHMMSS part of a backup filename."""
        return self._clock().strftime(TIMESTAMP_FORMAT)

    def snapshot(self, kind: BackupKind) -> Optional[BackupRecord]:
        """
        Copy the current data file byte-for-byte into the backup directory.

        Two snapshots of the same kind within one second share a filename;
        the later one replaces the earlier.

        Args:
            kind: Why the backup is being taken

        Returns:
            The new BackupRecord, or None if there is no data file to copy

        Raises:
            IOFailureError: If the copy fails
        """
        if not self.source.exists():
            logger.debug(f"No data file at {self.source}, skipping {kind.value} backup")
            return None

        filename = f"{kind.value}_{self._generate_timestamp()}.json"
        target = self.backup_dir / filename

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            # copyfile, not copy2: the backup's mtime must be its creation time
            shutil.copyfile(self.source, target)
        except OSError as e:
            raise IOFailureError(
                f"Failed to create {kind.value} backup {filename}: {e}",
                ErrorCode.BACKUP_SNAPSHOT_FAILED,
            )

        logger.info(f"Created {kind.value} backup: {filename}")
        return self._build_record(target)

    def list_backups(self) -> List[BackupRecord]:
        """
        List every backup file, newest first by modification time.

        A backup that cannot be parsed is listed with an unknown entry
        count; one that disappears mid-listing is skipped.

        Returns:
            List of BackupRecord objects
        """
        if not self.backup_dir.is_dir():
            return []

        try:
            candidates = [p for p in self.backup_dir.glob("*.json") if p.is_file()]
        except OSError as e:
            raise IOFailureError(
                f"Failed to read backup directory {self.backup_dir}: {e}",
                ErrorCode.STORE_READ_FAILED,
            )

        records = []
        for path in candidates:
            try:
                records.append(self._build_record(path))
            except OSError as e:
                logger.warning(f"Skipping backup {path.name}: {e}")

        records.sort(key=lambda r: (r.created_at, r.filename), reverse=True)
        return records

    def prune(self, limit: Optional[int] = None) -> RetentionResult:
        """
        Delete the oldest backups beyond the retention limit.

        Args:
            limit: Number of backups to keep (defaults to max_backups)

        Returns:
            RetentionResult describing what was kept and deleted
        """
        manager = RetentionManager(
            self.backup_dir,
            limit if limit is not None else self.max_backups,
        )
        result = manager.apply_retention()
        if result.deleted_backups:
            logger.info(
                f"Pruned {len(result.deleted_backups)} old backup(s), "
                f"{len(result.kept_backups)} kept"
            )
        return result

    def delete(self, filename: str) -> None:
        """
        Delete one backup. Retention is not re-applied.

        Raises:
            NotFoundError: If the backup does not exist
            IOFailureError: If the file cannot be removed
        """
        path = self.path_for(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFoundError(f"Backup not found: {filename}")
        except OSError as e:
            raise IOFailureError(
                f"Failed to delete backup {filename}: {e}",
                ErrorCode.BACKUP_DELETE_FAILED,
            )
        logger.info(f"Deleted backup: {filename}")

    def path_for(self, filename: str) -> Path:
        """
        Resolve a backup filename to its path.

        Only plain ``*.json`` names inside the backup directory are
        accepted; anything else is reported as not found.

        Raises:
            NotFoundError: If the name is invalid or no such backup exists
        """
        if (
            not filename
            or filename != Path(filename).name
            or filename.startswith(".")
            or "\\" in filename
            or not filename.endswith(".json")
        ):
            raise NotFoundError(f"Backup not found: {filename}")

        path = self.backup_dir / filename
        if not path.is_file():
            raise NotFoundError(f"Backup not found: {filename}")
        return path

    def read_backup(self, filename: str) -> Tuple[bytes, Any]:
        """
        Read a backup's raw bytes and its parsed JSON content.

        Raises:
            NotFoundError: If the backup does not exist
            CorruptDataError: If the content is not UTF-8 JSON
            IOFailureError: If the file cannot be read
        """
        path = self.path_for(filename)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"Backup not found: {filename}")
        except OSError as e:
            raise IOFailureError(f"Failed to read backup {filename}: {e}", ErrorCode.STORE_READ_FAILED)

        try:
            content = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptDataError(
                f"Backup {filename} is not valid JSON: {e}",
                ErrorCode.BACKUP_CORRUPT,
            )
        return raw, content

    def _build_record(self, path: Path) -> BackupRecord:
        """Stat and inspect one backup file. Raises OSError if it cannot be stat'ed."""
        stat_info = path.stat()
        kind, timestamp = parse_backup_filename(path.name)
        return BackupRecord(
            filename=path.name,
            path=path,
            size=stat_info.st_size,
            created_at=datetime.fromtimestamp(stat_info.st_mtime).astimezone(),
            entry_count=self._read_entry_count(path),
            kind=kind,
            timestamp=timestamp,
        )

    def _read_entry_count(self, path: Path) -> Optional[int]:
        """Best-effort entry count; None if the backup cannot be parsed."""
        try:
            content = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            log_structured_warning(
                logger,
                f"Backup {path.name} could not be parsed: {e}",
                ErrorCode.BACKUP_CORRUPT,
                context={"backup": str(path)},
            )
            return None
        return _count_entries(content)
