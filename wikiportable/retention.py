"""Retention manager for wikiportable.

This module provides the RetentionManager class that bounds the number of
backup files kept in the backup directory.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple
import logging

from wikiportable.logger import ErrorCode, log_structured_error


# Logger for retention operations
logger = logging.getLogger(__name__)


@dataclass
class RetentionResult:
    """Result of applying the retention policy."""
    kept_backups: List[Path] = field(default_factory=list)
    deleted_backups: List[Path] = field(default_factory=list)
    failed_backups: List[Path] = field(default_factory=list)
    freed_bytes: int = 0


class RetentionManager:
    """
    Keeps at most `limit` backups, deleting the oldest first.

    Age is the file modification time. Files sharing an mtime are ordered
    by name, which for backup filenames is creation order.
    """

    def __init__(self, backup_dir: Path, limit: int):
        """
        Initialize the retention manager.

        Args:
            backup_dir: Directory holding the backup files
            limit: Maximum number of backups to keep (at least 1)
        """
        if limit < 1:
            raise ValueError(f"Retention limit must be at least 1, got {limit}")
        self.backup_dir = Path(backup_dir)
        self.limit = limit

    def _list_backups(self) -> List[Tuple[float, Path, int]]:
        """
        List backup files as (mtime, path, size), newest first.

        Files that vanish or cannot be stat'ed while listing are skipped.
        """
        if not self.backup_dir.is_dir():
            return []

        backups = []
        for entry in self.backup_dir.glob("*.json"):
            try:
                stat_info = entry.stat()
            except OSError:
                continue
            if not entry.is_file():
                continue
            backups.append((stat_info.st_mtime, entry, stat_info.st_size))

        backups.sort(key=lambda b: (b[0], b[1].name), reverse=True)
        return backups

    def get_backups_to_delete(self) -> List[Path]:
        """
        Determine which backups fall outside the retention limit.

        Returns:
            Paths to delete, oldest first
        """
        backups = self._list_backups()
        excess = backups[self.limit:]
        return [path for _, path, _ in reversed(excess)]

    def apply_retention(self) -> RetentionResult:
        """
        Delete backups beyond the retention limit, oldest first.

        A backup that cannot be deleted is logged and kept; the remaining
        deletions still run.

        Returns:
            RetentionResult with kept, deleted and failed backups
        """
        backups = self._list_backups()
        result = RetentionResult()

        if len(backups) <= self.limit:
            result.kept_backups = [path for _, path, _ in backups]
            return result

        result.kept_backups = [path for _, path, _ in backups[:self.limit]]

        for _, path, size in reversed(backups[self.limit:]):
            try:
                path.unlink()
            except FileNotFoundError:
                # Already gone; the count still drops
                result.deleted_backups.append(path)
                continue
            except OSError as e:
                result.failed_backups.append(path)
                log_structured_error(
                    logger,
                    f"Could not delete old backup {path.name}: {e}",
                    ErrorCode.BACKUP_PRUNE_FAILED,
                    context={"backup": str(path)},
                )
                continue

            result.deleted_backups.append(path)
            result.freed_bytes += size
            logger.info(f"Deleted old backup: {path.name}")

        # Backups that could not be deleted stay on disk
        result.kept_backups.extend(result.failed_backups)
        return result
