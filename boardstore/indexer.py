"""
Summary index manager for the entity store.

The index is a single JSON file (``_summary.json``) holding one IndexEntry
per entity, ordered by creation time. It exists to answer "list everything"
without decoding every record.

CACHE SEMANTICS
---------------
The index is never a source of truth:
- a missing, empty or unreadable index file reads as an empty list
- it can always be rebuilt from a full scan of the entity files
- failing to write it is logged and swallowed; the record write that
  triggered it has already succeeded

Rebuilding is a pure projection and rendering is deterministic, so two
rebuilds from the same records produce byte-identical files.

Logging:
    Configure via logging.getLogger('boardstore.indexer').

    - DEBUG: index loads and writes
    - INFO: rebuilds
    - WARNING: unreadable or malformed index file
    - ERROR: index write failures (swallowed)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Type

from .schema import BaseSchema
from .types import Entity, IndexEntry
from .utils.persistence import atomic_write_bytes

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = "_summary.json"


@dataclass
class IndexStats:
    """Statistics about index usage."""
    hits: int = 0
    misses: int = 0
    rebuilds: int = 0
    write_failures: int = 0

    @property
    def hit_rate(self) -> float:
        """Share of reads served by a non-empty index."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class IndexManager:
    """
    Reads, writes and rebuilds the summary index of one store root.

    Usage:
        manager = IndexManager(root_dir, TaskSchema)

        entries = manager.read_index()
        if not entries:
            entries = manager.rebuild_from_scan(all_entities)
            manager.write_index(entries)
    """

    def __init__(self, root_dir: Path, schema: Type[BaseSchema], fsync: bool = False):
        """
        Initialize index manager.

        Args:
            root_dir: Store root directory (the index file lives at its top)
            schema: Schema used to project entities onto index entries
            fsync: Flush index writes to disk before renaming
        """
        self.root_dir = Path(root_dir)
        self.path = self.root_dir / SUMMARY_FILENAME
        self.schema = schema
        self.fsync = fsync
        self._stats = IndexStats()

    def read_index(self) -> List[IndexEntry]:
        """
        Load the index.

        Returns:
            Entries in stored order; empty if the file is absent or unusable
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            self._stats.misses += 1
            return []
        except OSError as e:
            logger.warning(f"Cannot read index {self.path}: {e}")
            self._stats.misses += 1
            return []

        try:
            data = json.loads(raw.decode("utf-8"))
            if not isinstance(data, list):
                raise TypeError(f"expected a list, got {type(data).__name__}")
            entries = [IndexEntry.from_dict(item) for item in data]
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError,
                ValueError, AttributeError, RecursionError) as e:
            logger.warning(f"Ignoring malformed index {self.path}: {e}")
            self._stats.misses += 1
            return []

        if entries:
            self._stats.hits += 1
        else:
            self._stats.misses += 1
        logger.debug(f"Loaded index with {len(entries)} entries")
        return entries

    def render(self, entries: Iterable[IndexEntry]) -> bytes:
        """Serialize entries exactly as write_index() stores them."""
        text = json.dumps(
            [entry.to_dict() for entry in entries],
            indent=2,
            sort_keys=True,
            ensure_ascii=False,
        )
        return (text + "\n").encode("utf-8")

    def write_index(self, entries: Iterable[IndexEntry]) -> bool:
        """
        Overwrite the index file atomically.

        Returns:
            True if written, False if the write failed (already logged)
        """
        entries = list(entries)
        try:
            self.root_dir.mkdir(parents=True, exist_ok=True)
            atomic_write_bytes(self.path, self.render(entries), fsync=self.fsync)
        except OSError as e:
            self._stats.write_failures += 1
            logger.error(f"Failed to write index {self.path}: {e}")
            return False
        logger.debug(f"Wrote index with {len(entries)} entries")
        return True

    def rebuild_from_scan(self, entities: Iterable[Entity]) -> List[IndexEntry]:
        """
        Project every entity onto an index entry.

        Pure: the result depends only on the entities, ordered by
        (created_at, id) regardless of scan order.
        """
        return sorted(
            (self.schema.project(entity) for entity in entities),
            key=lambda entry: entry.sort_key,
        )

    def rebuild(self, entities: Iterable[Entity]) -> List[IndexEntry]:
        """Rebuild from entities and write the result."""
        entries = self.rebuild_from_scan(entities)
        self._stats.rebuilds += 1
        self.write_index(entries)
        logger.info(f"Rebuilt {self.schema.entity_type or 'entity'} index: {len(entries)} entries")
        return entries

    @staticmethod
    def upsert(entries: Iterable[IndexEntry], entry: IndexEntry) -> List[IndexEntry]:
        """Return entries with the entry for entry.id replaced or added, in order."""
        result = [existing for existing in entries if existing.id != entry.id]
        result.append(entry)
        result.sort(key=lambda item: item.sort_key)
        return result

    @staticmethod
    def discard(entries: Iterable[IndexEntry], entity_id: str) -> List[IndexEntry]:
        """Return entries without the entry for entity_id."""
        return [entry for entry in entries if entry.id != entity_id]

    def get_stats(self) -> Dict[str, Any]:
        """Get index usage statistics."""
        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "hit_rate": f"{self._stats.hit_rate:.1%}",
            "rebuilds": self._stats.rebuilds,
            "write_failures": self._stats.write_failures,
        }
