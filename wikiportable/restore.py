"""Restore engine for wikiportable.

Replaces the wiki data file with the contents of a backup. The current
data file is always saved as a ``restore_safety_`` backup first, so a
restore can itself be undone by restoring that safety backup.
"""

from typing import List
import logging

from wikiportable.backups import BackupKind, BackupManager
from wikiportable.errors import CorruptDataError, IOFailureError
from wikiportable.logger import ErrorCode, log_structured_error
from wikiportable.store import Entry, EntryStore


logger = logging.getLogger(__name__)


class RestoreEngine:
    """Restores the entry store from a backup file."""

    def __init__(self, store: EntryStore, backups: BackupManager):
        self.store = store
        self.backups = backups

    def restore(self, filename: str) -> List[Entry]:
        """
        Replace the data file with the exact bytes of a backup.

        Process:
        1. Read and validate the backup (nothing is touched if this fails)
        2. Snapshot the current data file as RESTORE_SAFETY, if one exists
        3. Overwrite the data file with the backup's raw bytes
        4. Return the restored entries

        Retention is not applied, so the safety backup survives even when
        the backup directory is already at its limit.

        Args:
            filename: Name of the backup to restore

        Returns:
            The entries now in the store

        Raises:
            NotFoundError: If the backup does not exist
            CorruptDataError: If the backup is not a JSON array
            IOFailureError: If the safety backup or the overwrite fails
        """
        raw, entries = self.backups.read_backup(filename)
        if not isinstance(entries, list):
            raise CorruptDataError(
                f"Backup {filename} does not contain an array "
                f"(found {type(entries).__name__})",
                ErrorCode.BACKUP_CORRUPT,
            )

        safety = None
        if self.store.exists():
            safety = self.backups.snapshot(BackupKind.RESTORE_SAFETY)

        try:
            self.store.write_raw(raw)
        except IOFailureError as e:
            log_structured_error(
                logger,
                f"Restore from {filename} failed: {e}",
                ErrorCode.RESTORE_FAILED,
                context={
                    "backup": filename,
                    "safety_backup": safety.filename if safety else None,
                },
            )
            raise

        logger.info(
            f"Restored {len(entries)} entries from {filename}"
            + (f" (previous state saved as {safety.filename})" if safety else "")
        )
        return entries
