"""
File-based entity store with a rebuildable summary index and an embedded
audit trail.

Storage layout:
    {root_dir}/
        entities/
            {entity_id}.json      # One record per entity (codec format)
            .{entity_id}.json.*.tmp  # In-flight atomic writes
        _summary.json             # Summary index (disposable cache)
        .locks/
            {entity_id}.lock      # Only with StoreConfig.process_locking

Write protocol:
    Every record write goes to a temp file unique to the attempt, is
    flushed according to the durability mode, and becomes visible through a
    single os.replace(). A crash before the rename leaves the previous
    record exactly as it was.

Failure policy:
    - failures that affect one record's durability reach the caller
      (StorageError, ConflictError)
    - failures confined to the index are logged and absorbed
    - an undecodable record is skipped during listings and scans, so one bad
      file never hides the others

Logging:
    Configure via logging.getLogger('boardstore.store').

    - DEBUG: individual creates/updates/removes, ignored reserved keys
    - INFO: index drift repairs
    - WARNING: skipped corrupt or unreadable records
    - ERROR: index refresh failures (absorbed)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Type

from .audit import AuditLogger
from .codec import RecordCodec, normalize_dates
from .config import DurabilityMode, IndexStrategy, StoreConfig
from .errors import ConflictError, DecodeError, NotFoundError, StorageError, ValidationError
from .indexer import IndexManager
from .schema import BaseSchema
from .types import (
    RESERVED_KEYS,
    AuditEvent,
    AuditEventKind,
    AuditMetadata,
    CommentMetadata,
    Entity,
    IndexEntry,
    LinkMetadata,
)
from .utils.id_generation import generate_entity_id, generate_short_id, is_valid_id
from .utils.locking import KeyedLocks, LockTimeout, ProcessLock
from .utils.persistence import atomic_write_bytes, fsync_directory
from .utils.timestamps import format_timestamp, utc_now

logger = logging.getLogger(__name__)

ENTITIES_DIRNAME = "entities"
LOCKS_DIRNAME = ".locks"
RECORD_SUFFIX = ".json"

# Attempts at drawing an unused ID before giving up
MAX_ID_ATTEMPTS = 5

# (kind, description, metadata) of an event a sub-mutation appends
PendingEvent = Tuple[AuditEventKind, str, AuditMetadata]


@dataclass
class ScanResult:
    """
    Outcome of reading every record file.

    Attributes:
        entities: Records that decoded cleanly
        corrupt: IDs whose files failed to decode
        unreadable: IDs whose files could not be read at all
    """

    entities: List[Entity] = field(default_factory=list)
    corrupt: List[str] = field(default_factory=list)
    unreadable: List[str] = field(default_factory=list)


class EntityStore:
    """
    Durable store for one entity type.

    Example:
        >>> store = EntityStore(Path("/data/tasks"), TaskSchema)
        >>> task = store.create({"title": "Write docs", "status": "backlog"})
        >>> task = store.update(task.id, {"status": "in-progress"}, actor="alice")
        >>> [event.kind.value for event in store.for_entity(task.id)]
        ['creation', 'status_change']
        >>> store.remove(task.id)
        True
    """

    def __init__(
        self,
        root_dir: Path,
        schema: Type[BaseSchema],
        config: Optional[StoreConfig] = None,
    ):
        """
        Initialize store, creating directory structure if needed.

        Args:
            root_dir: Root directory of this store
            schema: Schema of the stored entity type
            config: Store configuration (defaults to StoreConfig())

        Raises:
            StorageError: If the directories cannot be created
        """
        self.root_dir = Path(root_dir)
        self.schema = schema
        self.config = config or StoreConfig()
        self.entities_dir = self.root_dir / ENTITIES_DIRNAME
        try:
            self.entities_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Cannot create store directory {self.entities_dir}: {e}",
                path=str(self.entities_dir),
            ) from e

        self.codec = RecordCodec(schema)
        self.index = IndexManager(self.root_dir, schema, fsync=self.config.fsync_index)
        self.audit = AuditLogger(self, schema, default_actor=self.config.default_actor)
        self._locks = KeyedLocks()

        logger.debug(
            f"EntityStore for '{schema.entity_type}' at {self.root_dir} "
            f"(durability={self.config.durability.value}, "
            f"index={self.config.index_strategy.value})"
        )

    def __repr__(self) -> str:
        return f"EntityStore({self.schema.entity_type!r}, {str(self.root_dir)!r})"

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def create(self, payload: Dict[str, Any], actor: Optional[str] = None) -> Entity:
        """
        Create and persist a new entity.

        Args:
            payload: Domain fields; reserved record keys are ignored
            actor: Who created it (recorded on the creation event)

        Returns:
            The stored entity, with one creation event

        Raises:
            ValidationError: If the payload fails the schema (no I/O happened)
            StorageError: If the record could not be written
        """
        fields = self.schema.prepare_payload(payload)
        normalize_dates(fields, self.schema.date_fields())

        now = utc_now()
        entity = Entity(
            id=self._new_id(),
            entity_type=self.schema.entity_type,
            created_at=now,
            updated_at=now,
            fields=fields,
        )
        self.audit.record_creation(entity, actor)
        payload_bytes = self._encode(entity)

        with self._exclusive(entity.id):
            self._write(entity.id, payload_bytes, create=True)

        self._index_after_create(entity)
        logger.debug(f"Created {self.schema.entity_type} {entity.id}")
        return entity

    def get(self, entity_id: str) -> Optional[Entity]:
        """
        Read one entity. Never consults the index.

        Returns:
            Entity or None if no record exists for the ID

        Raises:
            DecodeError: If the record exists but is malformed
            StorageError: If the record could not be read
        """
        return self._read(entity_id)

    def require(self, entity_id: str) -> Entity:
        """
        Read one entity that must exist.

        Raises:
            NotFoundError: If no record exists for the ID
        """
        entity = self._read(entity_id)
        if entity is None:
            raise NotFoundError(
                f"{self.schema.entity_type or 'Entity'} not found: {entity_id}",
                entity_id=entity_id,
            )
        return entity

    def exists(self, entity_id: str) -> bool:
        """Check whether a record file exists for the ID."""
        path = self._entity_path(entity_id)
        return path is not None and path.exists()

    def list(self) -> List[Entity]:
        """
        All readable entities, oldest first.

        The index supplies the IDs to load. An empty index falls back to a
        directory scan, and the index is rewritten whenever it disagrees with
        what was loaded. Corrupt records are skipped with a warning.
        """
        entries = self.index.read_index()
        disk_ids = self._record_ids()

        if not entries:
            if not disk_ids:
                return []
            scan = self._load_many(disk_ids)
            if scan.entities:
                self.index.rebuild(scan.entities)
            return self._ordered(scan.entities)

        on_disk = set(disk_ids)
        indexed = list(dict.fromkeys(entry.id for entry in entries))
        indexed_set = set(indexed)
        wanted = [entity_id for entity_id in indexed if entity_id in on_disk]
        wanted.extend(entity_id for entity_id in disk_ids if entity_id not in indexed_set)

        scan = self._load_many(wanted)
        if self.index.rebuild_from_scan(scan.entities) != entries:
            logger.info(
                f"{self.schema.entity_type} index out of date "
                f"({len(indexed_set - on_disk)} dangling, "
                f"{len(on_disk - indexed_set)} unindexed), rewriting"
            )
            self.index.rebuild(scan.entities)
        return self._ordered(scan.entities)

    def update(
        self,
        entity_id: str,
        changes: Dict[str, Any],
        actor: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Optional[Entity]:
        """
        Merge changes into an entity.

        Each tracked field that changes value appends one audit event
        (recorded before the merge, so 'from' is the old value).

        Args:
            entity_id: Entity to update
            changes: Fields to set; reserved record keys are ignored
            actor: Who made the change
            expected_version: If given, fail unless the stored version matches

        Returns:
            Updated entity, or None if it does not exist

        Raises:
            ValidationError: If the changes fail the schema (no I/O happened)
            ConflictError: If the version check fails
            DecodeError: If the stored record is malformed
            StorageError: If the record could not be written
        """
        clean = self._clean_changes(changes)
        return self._mutate(entity_id, lambda entity: clean, actor, expected_version)

    def remove(self, entity_id: str) -> bool:
        """
        Delete an entity's record.

        Returns:
            True if deleted, False if it did not exist

        Raises:
            StorageError: If the file exists but could not be deleted
        """
        path = self._entity_path(entity_id)
        if path is None:
            return False

        with self._exclusive(entity_id):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageError(
                    f"Cannot delete {entity_id}: {e}", entity_id=entity_id, path=str(path)
                ) from e
            if self.config.durability == DurabilityMode.PARANOID:
                self._fsync_entities_dir()

        self._locks.discard(entity_id)
        self._refresh_index(removed_id=entity_id)
        logger.debug(f"Removed {self.schema.entity_type} {entity_id}")
        return True

    def add_link(
        self,
        entity_id: str,
        url: str,
        title: str = "",
        link_type: str = "other",
        actor: Optional[str] = None,
    ) -> Optional[Entity]:
        """
        Attach a link and record a link_added event.

        Returns:
            Updated entity, or None if it does not exist

        Raises:
            ValidationError: If the schema has no links field or url is empty
        """
        field_name = self._field_for("links_field", "links")
        if not url:
            raise ValidationError("Link url is required")

        link = {
            "id": generate_short_id("L"),
            "url": url,
            "title": title,
            "type": link_type,
            "created_at": format_timestamp(utc_now()),
        }
        metadata = LinkMetadata(link_id=link["id"], url=url, title=title, link_type=link_type)
        event = (AuditEventKind.LINK_ADDED, f"Link added: {title or url}", metadata)
        return self._mutate(
            entity_id,
            lambda entity: {field_name: list(entity.get(field_name) or []) + [link]},
            actor,
            None,
            event,
        )

    def add_comment(
        self,
        entity_id: str,
        text: str,
        author: Optional[str] = None,
    ) -> Optional[Entity]:
        """
        Append a comment and record a comment_added event.

        Returns:
            Updated entity, or None if it does not exist

        Raises:
            ValidationError: If the schema has no comments field or text is empty
        """
        field_name = self._field_for("comments_field", "comments")
        if not text or not text.strip():
            raise ValidationError("Comment text is required")

        author = author or self.config.default_actor
        comment = {
            "id": generate_short_id("C"),
            "text": text,
            "author": author,
            "created_at": format_timestamp(utc_now()),
        }
        excerpt = text if len(text) <= 80 else text[:77] + "..."
        metadata = CommentMetadata(comment_id=comment["id"], author=author, excerpt=excerpt)
        event = (AuditEventKind.COMMENT_ADDED, f"Comment added by {author}", metadata)
        return self._mutate(
            entity_id,
            lambda entity: {field_name: list(entity.get(field_name) or []) + [comment]},
            author,
            None,
            event,
        )

    def summaries(
        self,
        status: Any = None,
        assignee: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> List[IndexEntry]:
        """
        Index entries, optionally filtered, without decoding full records
        (unless the index has to be rebuilt first).
        """
        entries = self.index.read_index()
        if not entries:
            disk_ids = self._record_ids()
            if disk_ids:
                entries = self.index.rebuild(self._load_many(disk_ids).entities)

        if status is not None:
            entries = [entry for entry in entries if entry.status == status]
        if assignee is not None:
            entries = [entry for entry in entries if entry.assignee == assignee]
        if tag is not None:
            entries = [entry for entry in entries if tag in entry.tags]
        return entries

    def scan(self) -> ScanResult:
        """Read every record file, sorting them into good, corrupt and unreadable."""
        return self._load_many(self._record_ids())

    def rebuild_index(self) -> List[IndexEntry]:
        """Force a rebuild of the index from a full scan."""
        return self.index.rebuild(self.scan().entities)

    def for_entity(self, entity_id: str) -> List[AuditEvent]:
        """Audit trail of one entity (empty if it does not exist)."""
        return self.audit.for_entity(entity_id)

    def query(self, since=None, until=None, entity_ids=None, kinds=None) -> List[AuditEvent]:
        """Audit events across all entities, newest first. See AuditLogger.query."""
        return self.audit.query(since=since, until=until, entity_ids=entity_ids, kinds=kinds)

    # =========================================================================
    # MUTATION CORE
    # =========================================================================

    def _mutate(
        self,
        entity_id: str,
        build_changes: Callable[[Entity], Dict[str, Any]],
        actor: Optional[str],
        expected_version: Optional[int],
        event: Optional[PendingEvent] = None,
    ) -> Optional[Entity]:
        """
        Load, change and rewrite one entity under its lock.

        Every mutation (update and its wrappers) goes through here.
        """
        if self._entity_path(entity_id) is None:
            return None

        with self._exclusive(entity_id):
            current = self._read(entity_id)
            if current is None:
                return None
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(
                    f"Version mismatch for {entity_id}",
                    entity_id=entity_id,
                    expected=expected_version,
                    actual=current.version,
                )

            entity = current.copy()
            changes = build_changes(entity)
            now = utc_now()
            if now <= current.updated_at:
                now = current.updated_at + timedelta(microseconds=1)

            self.audit.derive_transitions(entity, changes, actor, timestamp=now)
            if event is not None:
                kind, description, metadata = event
                self.audit.append(entity, kind, description, actor, metadata, timestamp=now)

            entity.fields.update(changes)
            entity.updated_at = now
            entity.version = current.version + 1
            self._write(entity.id, self._encode(entity), expected_version=current.version)

        self._refresh_index(entity=entity)
        logger.debug(f"Updated {self.schema.entity_type} {entity_id} to version {entity.version}")
        return entity

    def _clean_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Drop reserved keys, validate and normalize a partial update."""
        if not isinstance(changes, dict):
            raise ValidationError(f"Changes must be a dict, got {type(changes).__name__}")

        ignored = sorted(key for key in changes if key in RESERVED_KEYS)
        if ignored:
            logger.debug(f"Ignoring reserved keys in update: {ignored}")
        clean = {key: value for key, value in changes.items() if key not in RESERVED_KEYS}

        self.schema.validate_changes(clean).raise_if_invalid(self.schema.entity_type)
        self.schema.format_undeclared_dates(clean)
        return normalize_dates(clean, self.schema.date_fields())

    def _field_for(self, attribute: str, operation: str) -> str:
        field_name = getattr(self.schema, attribute)
        if not field_name:
            raise ValidationError(
                f"{self.schema.entity_type} entities do not support {operation}",
                entity_type=self.schema.entity_type,
            )
        return field_name

    # =========================================================================
    # RECORD I/O
    # =========================================================================

    def _entity_path(self, entity_id: str) -> Optional[Path]:
        """Path of an entity's record, or None for IDs that cannot name a file."""
        if not is_valid_id(entity_id):
            return None
        return self.entities_dir / f"{entity_id}{RECORD_SUFFIX}"

    def _new_id(self) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            entity_id = generate_entity_id(self.schema.id_prefix)
            if not self._entity_path(entity_id).exists():
                return entity_id
        raise StorageError(
            f"Could not allocate an unused ID after {MAX_ID_ATTEMPTS} attempts",
            retryable=True,
        )

    def _encode(self, entity: Entity) -> bytes:
        try:
            return self.codec.encode(entity)
        except (TypeError, ValueError, RecursionError) as e:
            raise ValidationError(
                f"{self.schema.entity_type} {entity.id} is not JSON-serializable: {e}",
                entity_id=entity.id,
            ) from e

    def _read(self, entity_id: str) -> Optional[Entity]:
        """
        Read and decode one record.

        Raises:
            DecodeError: If the file is malformed or belongs to another ID
            StorageError: If the file could not be read
        """
        path = self._entity_path(entity_id)
        if path is None:
            return None
        try:
            payload = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(
                f"Cannot read {entity_id}: {e}", entity_id=entity_id, path=str(path)
            ) from e

        try:
            entity = self.codec.decode(payload)
        except DecodeError as e:
            e.context.setdefault("entity_id", entity_id)
            e.context["path"] = str(path)
            raise
        if entity.id != entity_id:
            raise DecodeError(
                f"Record {path.name} holds entity {entity.id}",
                entity_id=entity_id,
                path=str(path),
            )
        return entity

    def _write(
        self,
        entity_id: str,
        payload: bytes,
        create: bool = False,
        expected_version: Optional[int] = None,
    ) -> None:
        """
        Atomically replace one record.

        The version check runs after the new content is on disk and right
        before the rename, so a writer in another process that committed in
        between is detected instead of overwritten.

        Raises:
            ConflictError: If the record changed (or appeared) underneath us
            StorageError: If the write failed
        """
        path = self._entity_path(entity_id)

        def check_unchanged(_temp_path: Path) -> None:
            if create:
                if path.exists():
                    raise ConflictError(f"Entity {entity_id} already exists", entity_id=entity_id)
                return
            if expected_version is None:
                return
            on_disk = self._read(entity_id)
            actual = on_disk.version if on_disk is not None else None
            if actual != expected_version:
                raise ConflictError(
                    f"{entity_id} changed during update",
                    entity_id=entity_id,
                    expected=expected_version,
                    actual=actual,
                )

        try:
            atomic_write_bytes(
                path,
                payload,
                fsync=self.config.fsync_records,
                fsync_dir=self.config.durability == DurabilityMode.PARANOID,
                before_replace=check_unchanged,
            )
        except OSError as e:
            raise StorageError(
                f"Cannot write {entity_id}: {e}", entity_id=entity_id, path=str(path)
            ) from e

    def _fsync_entities_dir(self) -> None:
        try:
            fsync_directory(self.entities_dir)
        except OSError as e:
            raise StorageError(f"Cannot sync {self.entities_dir}: {e}") from e

    def _record_ids(self) -> List[str]:
        """IDs of all record files, sorted. Temp files are excluded."""
        try:
            return sorted(
                path.stem
                for path in self.entities_dir.glob(f"*{RECORD_SUFFIX}")
                if not path.name.startswith(".")
            )
        except OSError as e:
            raise StorageError(
                f"Cannot list {self.entities_dir}: {e}", path=str(self.entities_dir)
            ) from e

    def _load_many(self, entity_ids: Iterable[str]) -> ScanResult:
        """Read records, skipping (and logging) the ones that cannot be used."""
        result = ScanResult()
        for entity_id in entity_ids:
            try:
                entity = self._read(entity_id)
            except DecodeError as e:
                logger.warning(f"Skipping corrupt {self.schema.entity_type} record {entity_id}: {e}")
                result.corrupt.append(entity_id)
                continue
            except StorageError as e:
                logger.warning(f"Skipping unreadable {self.schema.entity_type} record {entity_id}: {e}")
                result.unreadable.append(entity_id)
                continue
            if entity is None:
                logger.debug(f"Record {entity_id} vanished during scan")
                continue
            result.entities.append(entity)
        return result

    @staticmethod
    def _ordered(entities: List[Entity]) -> List[Entity]:
        return sorted(entities, key=lambda entity: (entity.created_at, entity.id))

    # =========================================================================
    # LOCKING
    # =========================================================================

    @contextmanager
    def _exclusive(self, entity_id: str) -> Iterator[None]:
        """
        Serialize mutations of one entity.

        Raises:
            StorageError: (retryable) if a lock is not acquired within
                StoreConfig.lock_timeout
        """
        timeout = self.config.lock_timeout
        try:
            with self._locks.hold(entity_id, timeout=timeout):
                if self.config.process_locking:
                    lock = ProcessLock(self.root_dir / LOCKS_DIRNAME / f"{entity_id}.lock")
                    with lock.hold(timeout=timeout if timeout is not None else float("inf")):
                        yield
                else:
                    yield
        except LockTimeout as e:
            raise StorageError(str(e), entity_id=entity_id, retryable=True) from e

    # =========================================================================
    # INDEX MAINTENANCE
    # =========================================================================

    def _index_after_create(self, entity: Entity) -> None:
        """Append the new entity's entry (rebuild if the index was empty but records exist)."""
        try:
            entries = self.index.read_index()
            if not entries and any(other != entity.id for other in self._record_ids()):
                self.rebuild_index()
                return
            self.index.write_index(self.index.upsert(entries, self.schema.project(entity)))
        except StorageError as e:
            logger.error(f"Index update after creating {entity.id} failed: {e}")

    def _refresh_index(self, entity: Optional[Entity] = None, removed_id: Optional[str] = None) -> None:
        """Bring the index in line after an update or remove. Never raises StoreError."""
        try:
            if self.config.index_strategy == IndexStrategy.INCREMENTAL:
                entries = self.index.read_index()
                if entries:
                    if removed_id is not None:
                        entries = self.index.discard(entries, removed_id)
                    else:
                        entries = self.index.upsert(entries, self.schema.project(entity))
                    self.index.write_index(entries)
                    return
            self.rebuild_index()
        except StorageError as e:
            logger.error(f"Index refresh failed, next listing will repair it: {e}")
