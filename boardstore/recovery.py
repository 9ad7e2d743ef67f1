"""
Recovery module for the entity store.

Handles crash leftovers and integrity verification through:
- Removal of temp files left behind by interrupted atomic writes
- Record checksum/decode verification
- Stale index detection and rebuild
- Recovery reporting

Recovery never modifies or deletes entity records. A corrupt record is
reported so a person can decide what to do with it.

Logging:
    This module uses Python's standard logging. Configure via:

        import logging
        logging.getLogger('boardstore.recovery').setLevel(logging.DEBUG)

    Log levels:
    - DEBUG: Race conditions, skipped files
    - INFO: Recovery actions (temp cleanup, index rebuild)
    - WARNING: Corrupted records
    - ERROR: Recovery failures
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .errors import StorageError
from .store import EntityStore
from .utils.persistence import iter_temp_files

logger = logging.getLogger(__name__)


@dataclass
class RecoveryResult:
    """
    Result of a recovery run with detailed diagnostics.

    Attributes:
        success: True if recovery completed and found no corrupt records
        temp_files_removed: Names of leftover temp files that were deleted
        corrupted_entities: IDs of records that failed to decode
        unreadable_entities: IDs of records that could not be read
        index_rebuilt: True if the index was rebuilt
        actions_taken: Human-readable log of recovery actions
    """

    success: bool = True
    temp_files_removed: List[str] = field(default_factory=list)
    corrupted_entities: List[str] = field(default_factory=list)
    unreadable_entities: List[str] = field(default_factory=list)
    index_rebuilt: bool = False
    actions_taken: List[str] = field(default_factory=list)

    def add_action(self, action: str) -> None:
        """
        Log a recovery action.

        Args:
            action: Human-readable description of action taken
        """
        self.actions_taken.append(action)


class RecoveryManager:
    """
    Inspects and repairs one store root.

    Run it at startup, before writers are active: temp files younger than
    ``min_temp_age`` seconds are assumed to belong to a write in progress and
    are left alone.

    Example:
        >>> manager = RecoveryManager(store)
        >>> if manager.needs_recovery():
        ...     result = manager.recover()
        ...     for action in result.actions_taken:
        ...         print(action)
    """

    def __init__(self, store: EntityStore, min_temp_age: float = 0.0):
        """
        Initialize recovery manager.

        Args:
            store: Store to inspect
            min_temp_age: Minimum age in seconds of a temp file to remove it
        """
        self.store = store
        self.min_temp_age = min_temp_age

    def find_temp_files(self) -> List[Path]:
        """Leftover temp files in the entity directory and the store root."""
        cutoff = time.time() - self.min_temp_age
        found = []
        for directory in (self.store.entities_dir, self.store.root_dir):
            for path in iter_temp_files(directory):
                try:
                    if path.stat().st_mtime <= cutoff:
                        found.append(path)
                except FileNotFoundError:
                    logger.debug("Temp file %s vanished during scan (race condition)", path.name)
        return sorted(found)

    def clean_temp_files(self) -> List[str]:
        """
        Delete leftover temp files.

        Returns:
            Names of the files removed
        """
        removed = []
        for path in self.find_temp_files():
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageError(f"Cannot remove temp file {path}: {e}", path=str(path)) from e
            removed.append(path.name)
        if removed:
            logger.info("Removed %d leftover temp file(s) from %s", len(removed), self.store.root_dir)
        return removed

    def verify_store_integrity(self) -> List[str]:
        """
        Check that every record decodes.

        Returns:
            List of corrupted entity IDs (empty if all valid)
        """
        return self.store.scan().corrupt

    def needs_index_recovery(self) -> bool:
        """
        Check whether the index disagrees with the records on disk.

        A missing index over a non-empty store counts as stale. An empty
        store with no index does not.
        """
        entries = self.store.index.read_index()
        expected = self.store.index.rebuild_from_scan(self.store.scan().entities)
        if entries != expected:
            logger.debug(
                "Index recovery needed: %d indexed, %d on disk", len(entries), len(expected)
            )
            return True
        return False

    def needs_recovery(self) -> bool:
        """
        Check if recovery is needed.

        Recovery is needed if:
        - There are leftover temp files
        - Records fail to decode
        - The index is stale

        Returns:
            True if recovery should be performed
        """
        if self.find_temp_files():
            return True
        if self.verify_store_integrity():
            return True
        return self.needs_index_recovery()

    def recover(self) -> RecoveryResult:
        """
        Perform the full recovery procedure.

        Steps:
        1. Remove leftover temp files
        2. Scan records, reporting corrupt and unreadable ones
        3. Rebuild the index if it is stale

        Returns:
            RecoveryResult with detailed diagnostics
        """
        result = RecoveryResult()

        result.temp_files_removed = self.clean_temp_files()
        if result.temp_files_removed:
            result.add_action(f"Removed {len(result.temp_files_removed)} leftover temp file(s)")
            for name in result.temp_files_removed:
                result.add_action(f"  - {name}")

        scan = self.store.scan()
        result.corrupted_entities = scan.corrupt
        result.unreadable_entities = scan.unreadable
        if scan.corrupt:
            result.success = False
            result.add_action(f"Found {len(scan.corrupt)} corrupted record(s)")
            for entity_id in scan.corrupt:
                result.add_action(f"  - Entity {entity_id}: failed to decode")
        if scan.unreadable:
            result.success = False
            result.add_action(f"Found {len(scan.unreadable)} unreadable record(s)")
            for entity_id in scan.unreadable:
                result.add_action(f"  - Entity {entity_id}: read error")

        entries = self.store.index.read_index()
        if entries != self.store.index.rebuild_from_scan(scan.entities):
            rebuilt = self.store.index.rebuild(scan.entities)
            result.index_rebuilt = True
            result.add_action(f"Rebuilt index: {len(rebuilt)} entity/entities indexed")

        if not result.actions_taken:
            result.add_action("No recovery needed - store is clean")
        else:
            logger.info("Recovery of %s finished: %d action(s)", self.store.root_dir, len(result.actions_taken))

        return result
