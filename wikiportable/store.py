"""Entry store for wikiportable.

This module provides the EntryStore class that owns the wiki data file: a
single JSON document holding the array of all wiki entries. Every save
replaces the whole file, and a save over a populated store is preceded by
an automatic backup.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
import json
import logging
import os
import tempfile
import time

from wikiportable.backups import BackupKind, BackupManager, BackupRecord
from wikiportable.errors import CorruptDataError, InvalidPayloadError, IOFailureError
from wikiportable.logger import ErrorCode, log_structured_warning


logger = logging.getLogger(__name__)

Entry = Dict[str, Any]


WELCOME_CONTENT = """# Portable Wiki

Welcome! This wiki keeps all of its articles in one JSON file and backs
that file up automatically.

## Features

### Saving
Every save writes the whole wiki to `data/wiki_data.json`.

### Automatic backups
Before each save the previous version is copied to the `backups/` folder
as `auto_YYYYMMDD_HHMMSS.json`. The 30 most recent backups are kept.

### Restore and merge
From the backup manager you can restore an old version (the current one
is kept as a `restore_safety_` backup first) or merge an old version's
articles into the current wiki.

## Moving to another computer

Copy the whole folder. The data, backups and settings travel with it.
"""


def default_seed_entries() -> List[Entry]:
    """The single welcome article written into a brand-new wiki."""
    return [{
        "id": int(time.time() * 1000),
        "title": "Welcome to Portable Wiki",
        "category": "Getting Started",
        "tags": ["manual", "important"],
        "content": WELCOME_CONTENT,
        "updated": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    }]


def serialize_entries(entries: List[Entry]) -> bytes:
    """Pretty-print entries as UTF-8 JSON, the on-disk store format."""
    return json.dumps(entries, indent=2, ensure_ascii=False).encode("utf-8")


@dataclass
class WriteResult:
    """Result of a store write."""
    entry_count: int
    backup: Optional[BackupRecord] = None
    suspicious: bool = False  # a populated store was overwritten with nothing


class EntryStore:
    """
    Reads and writes the wiki data file.

    The store does no locking of its own; callers that share it between
    threads or processes serialise access (see WikiService).
    """

    def __init__(
        self,
        path: Path,
        backups: Optional[BackupManager] = None,
        atomic_writes: bool = False,
    ):
        """
        Initialize the entry store.

        Args:
            path: Path to the JSON data file
            backups: Backup manager used to snapshot the file before a write
            atomic_writes: Write through a temporary file and rename it into place
        """
        self.path = Path(path)
        self.backups = backups
        self.atomic_writes = atomic_writes

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> List[Entry]:
        """
        Load all entries.

        Returns:
            The stored entries, or [] if no data file exists yet

        Raises:
            CorruptDataError: If the file is not a JSON array
            IOFailureError: If the file cannot be read
        """
        if not self.exists():
            return []

        raw = self.read_raw()
        try:
            content = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptDataError(f"Data file {self.path.name} is not valid JSON: {e}")

        if not isinstance(content, list):
            raise CorruptDataError(
                f"Data file {self.path.name} does not contain an array "
                f"(found {type(content).__name__})"
            )
        return content

    def read_raw(self) -> bytes:
        """Return the data file's bytes."""
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise IOFailureError(
                f"Failed to read data file {self.path}: {e}",
                ErrorCode.STORE_READ_FAILED,
            )

    def write(self, entries: Any) -> WriteResult:
        """
        Replace the stored entries.

        If the current data file holds anything, it is backed up first
        (kind AUTO) and retention is applied. Overwriting a populated
        store with an empty list is allowed but logged as suspicious.

        Args:
            entries: The complete new list of entries

        Returns:
            WriteResult with the backup taken, if any

        Raises:
            InvalidPayloadError: If entries is not a list; nothing is touched
            IOFailureError: If the backup or the write fails
        """
        if not isinstance(entries, list):
            raise InvalidPayloadError(
                f"Entries must be a JSON array, got {type(entries).__name__}"
            )

        previous_count = self._previous_entry_count()

        suspicious = bool(previous_count) and len(entries) == 0
        if suspicious:
            log_structured_warning(
                logger,
                f"Overwriting {previous_count} existing entries with an empty list",
                ErrorCode.STORE_EMPTY_OVERWRITE,
                context={"data_file": str(self.path), "previous_count": previous_count},
            )

        backup = None
        if previous_count and self.backups is not None:
            backup = self.backups.snapshot(BackupKind.AUTO)
            self.backups.prune()

        self._write_bytes(serialize_entries(entries))
        logger.info(f"Saved {len(entries)} entries to {self.path.name}")

        return WriteResult(
            entry_count=len(entries),
            backup=backup,
            suspicious=suspicious,
        )

    def write_raw(self, data: bytes) -> None:
        """Replace the data file with exactly these bytes. No backup is taken."""
        self._write_bytes(data)

    def initialize(self, seed: Optional[List[Entry]] = None) -> bool:
        """
        Create the data file with seed entries if it does not exist yet.

        Args:
            seed: Entries to write (defaults to a single welcome article)

        Returns:
            True if the file was created, False if it already existed
        """
        if self.exists():
            return False

        entries = seed if seed is not None else default_seed_entries()
        self._write_bytes(serialize_entries(entries))
        logger.info(f"Created data file {self.path} with {len(entries)} entries")
        return True

    def _previous_entry_count(self) -> Optional[int]:
        """
        Entry count of the current file, for the backup decision.

        Returns None if there is no file. A file that does not parse still
        holds data worth keeping, so it counts as one entry.
        """
        if not self.exists():
            return None
        try:
            return len(self.load())
        except CorruptDataError as e:
            log_structured_warning(
                logger,
                f"Existing data file could not be parsed before save: {e}",
                ErrorCode.STORE_CORRUPT,
                context={"data_file": str(self.path)},
            )
            try:
                return 1 if self.path.stat().st_size > 0 else 0
            except OSError:
                return 0

    def _write_bytes(self, data: bytes) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.atomic_writes:
                self._replace_atomically(data)
            else:
                self.path.write_bytes(data)
        except OSError as e:
            raise IOFailureError(
                f"Failed to write data file {self.path}: {e}",
                ErrorCode.STORE_WRITE_FAILED,
            )

    def _replace_atomically(self, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
