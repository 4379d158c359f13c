"""Wiki service orchestration for wikiportable.

WikiService wires the store, backup manager, restore engine and merge
engine together from one Configuration and runs every operation under the
single-writer lock. Both the HTTP API and the CLI go through it.
"""

from datetime import datetime
from typing import Callable, List, Optional
import logging

from wikiportable.backups import BackupKind, BackupManager, BackupRecord
from wikiportable.config import Configuration
from wikiportable.errors import NotFoundError
from wikiportable.lock import LockManager
from wikiportable.logger import ErrorCode
from wikiportable.merge import MergeEngine, MergeResult
from wikiportable.restore import RestoreEngine
from wikiportable.retention import RetentionResult
from wikiportable.store import Entry, EntryStore, WriteResult


logger = logging.getLogger(__name__)


class WikiService:
    """Entry point for every read and write of the wiki data."""

    def __init__(
        self,
        config: Configuration,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Build the components described by config.

        Args:
            config: Configuration with resolved paths
            clock: Local clock used for backup filenames
        """
        self.config = config
        storage = config.storage

        self.backups = BackupManager(
            source=storage.data_path,
            backup_dir=storage.backup_dir,
            max_backups=config.retention.max_backups,
            clock=clock,
        )
        self.store = EntryStore(
            storage.data_path,
            backups=self.backups,
            atomic_writes=storage.atomic_writes,
        )
        self.restorer = RestoreEngine(self.store, self.backups)
        self.merger = MergeEngine(
            self.store,
            self.backups,
            title_suffix=config.merge.title_suffix,
        )
        self.lock = LockManager(storage.lock_path, timeout=storage.lock_timeout_seconds)

    def initialize(self, seed: Optional[List[Entry]] = None) -> bool:
        """Create the data file with seed entries if it is missing."""
        with self.lock:
            return self.store.initialize(seed)

    def load(self) -> List[Entry]:
        with self.lock:
            return self.store.load()

    def save(self, entries) -> WriteResult:
        """Replace all entries, backing up the previous state first."""
        with self.lock:
            return self.store.write(entries)

    def list_backups(self) -> List[BackupRecord]:
        with self.lock:
            return self.backups.list_backups()

    def manual_backup(self) -> BackupRecord:
        """
        Take a MANUAL backup of the current data file and apply retention.

        Raises:
            NotFoundError: If there is no data file yet
        """
        with self.lock:
            record = self.backups.snapshot(BackupKind.MANUAL)
            if record is None:
                raise NotFoundError(
                    "Data file does not exist; nothing to back up",
                    ErrorCode.BACKUP_NO_DATA_FILE,
                )
            self.backups.prune()
            return record

    def restore(self, filename: str) -> List[Entry]:
        with self.lock:
            return self.restorer.restore(filename)

    def merge(self, filename: str, save: bool = False) -> MergeResult:
        """
        Merge a backup into the current entries.

        Args:
            filename: Backup to merge
            save: Also write the merged entries to the store (with the
                usual automatic backup); by default the caller decides

        Returns:
            MergeResult with the combined entries
        """
        with self.lock:
            result = self.merger.merge(filename)
            if save:
                self.store.write(result.merged)
            return result

    def delete_backup(self, filename: str) -> None:
        with self.lock:
            self.backups.delete(filename)

    def prune(self) -> RetentionResult:
        with self.lock:
            return self.backups.prune()
