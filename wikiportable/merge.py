"""Merge engine for wikiportable.

Combines the entries of a backup with the current store without touching
any existing entry. Incoming entries whose id is already in use get a new
id; incoming entries whose title matches an existing article get a suffix
so the imported copy can be told apart.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Set
import copy
import logging
import math
import time

from wikiportable.backups import BackupManager
from wikiportable.config import DEFAULT_TITLE_SUFFIX
from wikiportable.errors import CorruptDataError
from wikiportable.logger import ErrorCode, log_structured_error
from wikiportable.store import Entry, EntryStore


logger = logging.getLogger(__name__)


def _usable_id(value: Any) -> bool:
    # JSON ids are numbers or strings; anything else cannot act as identity
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, (int, str))


def _id_key(value: Hashable) -> Hashable:
    # 5.0 and 5 are the same number once the client parses the file
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class IdAllocator:
    """
    Hands out integer entry ids.

    Ids are derived from the clock in milliseconds plus a caller-supplied
    offset, are strictly increasing across calls on one allocator, and
    never collide with an id already reserved.
    """

    def __init__(
        self,
        taken: Iterable[Hashable] = (),
        clock: Callable[[], float] = time.time,
    ):
        self._taken: Set[Hashable] = {_id_key(v) for v in taken}
        self._clock = clock
        self._last: Optional[int] = None

    def is_taken(self, value: Hashable) -> bool:
        return _id_key(value) in self._taken

    def reserve(self, value: Hashable) -> None:
        """Mark an id as used."""
        self._taken.add(_id_key(value))

    def allocate(self, offset: int = 0) -> int:
        """Return a fresh id and reserve it."""
        candidate = int(self._clock() * 1000) + offset
        if self._last is not None and candidate <= self._last:
            candidate = self._last + 1
        while candidate in self._taken:
            candidate += 1
        self._taken.add(candidate)
        self._last = candidate
        return candidate


@dataclass
class MergeResult:
    """Result of merging a backup into the current entries."""
    merged: List[Entry]
    added_count: int
    reassigned_ids: Dict[int, Any] = field(default_factory=dict)  # index in merged -> original id
    retitled_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "merged": self.merged,
            "addedCount": self.added_count,
        }


class MergeEngine:
    """Merges a backup's entries into the current store's entries."""

    def __init__(
        self,
        store: EntryStore,
        backups: BackupManager,
        title_suffix: str = DEFAULT_TITLE_SUFFIX,
        allocator_factory: Callable[[Iterable[Hashable]], IdAllocator] = IdAllocator,
    ):
        self.store = store
        self.backups = backups
        self.title_suffix = title_suffix
        self.allocator_factory = allocator_factory

    def merge(self, filename: str) -> MergeResult:
        """
        Merge a backup into the current entries. Nothing is written.

        Args:
            filename: Name of the backup to merge

        Returns:
            MergeResult with the combined entries and the number added

        Raises:
            NotFoundError: If the backup does not exist
            CorruptDataError: If the backup or the data file is not a
                JSON array of objects
        """
        _, incoming = self.backups.read_backup(filename)
        if not isinstance(incoming, list):
            raise CorruptDataError(
                f"Backup {filename} does not contain an array "
                f"(found {type(incoming).__name__})",
                ErrorCode.BACKUP_CORRUPT,
            )

        current = self.store.load()
        try:
            result = self.merge_entries(current, incoming, source=filename)
        except CorruptDataError as e:
            log_structured_error(
                logger,
                f"Merge from {filename} failed: {e}",
                ErrorCode.MERGE_FAILED,
                context={"backup": filename},
            )
            raise

        logger.info(
            f"Merged {result.added_count} entries from {filename} "
            f"({len(result.reassigned_ids)} re-identified, {result.retitled_count} retitled)"
        )
        return result

    def merge_entries(
        self,
        current: List[Entry],
        incoming: List[Any],
        source: str = "backup",
    ) -> MergeResult:
        """
        Append incoming entries to current ones, resolving collisions.

        Neither input list nor any entry in them is modified.
        """
        for index, item in enumerate(incoming):
            if not isinstance(item, dict):
                raise CorruptDataError(
                    f"Entry {index} in {source} is not an object "
                    f"(found {type(item).__name__})",
                    ErrorCode.BACKUP_CORRUPT,
                )

        current_ids = [e.get("id") for e in current if isinstance(e, dict)]
        allocator = self.allocator_factory(i for i in current_ids if _usable_id(i))
        # Titles of the store as it was before this merge
        original_titles = {
            e["title"] for e in current
            if isinstance(e, dict) and isinstance(e.get("title"), str)
        }

        merged = list(current)
        added_count = 0
        reassigned: Dict[int, Any] = {}
        retitled = 0

        for item in incoming:
            entry = copy.deepcopy(item)
            entry_id = entry.get("id")

            if not _usable_id(entry_id) or allocator.is_taken(entry_id):
                new_id = allocator.allocate(offset=added_count)
                reassigned[len(merged)] = entry_id
                entry["id"] = new_id
            else:
                allocator.reserve(entry_id)

            title = entry.get("title")
            if isinstance(title, str) and title in original_titles:
                entry["title"] = f"{title}{self.title_suffix}"
                retitled += 1

            merged.append(entry)
            added_count += 1

        return MergeResult(
            merged=merged,
            added_count=added_count,
            reassigned_ids=reassigned,
            retitled_count=retitled,
        )
