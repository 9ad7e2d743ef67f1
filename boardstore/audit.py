"""
Audit trail derivation and queries.

The audit logger never touches the filesystem when appending: events are
added to the entity in memory and become durable when the store writes
the record. Reads go through the store it is embedded in.

Ordering guarantees:
- events are appended in the order their mutations are applied
- within one mutation, tracked fields produce events in schema order
- existing events are never edited, reordered or removed
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Type

from .errors import ValidationError
from .schema import BaseSchema
from .types import (
    METADATA_BY_KIND,
    AuditEvent,
    AuditEventKind,
    AuditMetadata,
    CreationMetadata,
    Entity,
    TransitionMetadata,
)
from .utils.id_generation import generate_event_id
from .utils.timestamps import ensure_utc, utc_now

if TYPE_CHECKING:
    from .store import EntityStore

logger = logging.getLogger(__name__)


def describe_transition(kind: AuditEventKind, field_name: str, old: Any, new: Any) -> str:
    """Human-readable description of a tracked field change."""
    if kind == AuditEventKind.ASSIGNMENT_CHANGE:
        if old in (None, ""):
            return f"Assigned to {new}"
        if new in (None, ""):
            return f"Unassigned from {old}"
        return f"Reassigned from {old} to {new}"
    label = field_name.replace("_", " ").capitalize()
    return f"{label} changed from {old} to {new}"


class AuditLogger:
    """
    Appends audit events to entities and answers audit queries.

    Example:
        >>> recent = store.audit.query(since=yesterday)
        >>> [event.kind for event in store.audit.for_entity(task.id)]
        [<AuditEventKind.CREATION: 'creation'>, <AuditEventKind.STATUS_CHANGE: 'status_change'>]
    """

    def __init__(self, store: EntityStore, schema: Type[BaseSchema], default_actor: str = "system"):
        self._store = store
        self.schema = schema
        self.default_actor = default_actor

    def append(
        self,
        entity: Entity,
        kind: AuditEventKind,
        description: str,
        actor: Optional[str] = None,
        metadata: Optional[AuditMetadata] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        """
        Append one event to the entity's audit list.

        Args:
            entity: Entity to annotate (modified in place)
            kind: Event kind
            description: Human-readable description
            actor: Who made the change (defaults to the configured actor)
            metadata: Kind-specific metadata; must match the kind
            timestamp: Event time (defaults to now)

        Returns:
            The appended event

        Raises:
            ValidationError: If metadata does not belong to the kind
        """
        kind = AuditEventKind(kind)
        expected = METADATA_BY_KIND[kind]
        if metadata is None and expected in (CreationMetadata, TransitionMetadata):
            metadata = expected()
        if not isinstance(metadata, expected):
            raise ValidationError(
                f"Audit event '{kind.value}' needs {expected.__name__} metadata",
                kind=kind.value,
                got=type(metadata).__name__,
            )

        event = AuditEvent(
            id=generate_event_id(),
            entity_id=entity.id,
            kind=kind,
            description=description,
            actor=actor or self.default_actor,
            timestamp=ensure_utc(timestamp) if timestamp else utc_now(),
            metadata=metadata,
        )
        entity.audit.append(event)
        return event

    def record_creation(self, entity: Entity, actor: Optional[str] = None) -> AuditEvent:
        """Seed a new entity's trail with its creation event."""
        status = self.schema.initial_status(entity.fields)
        label = entity.entity_type or "entity"
        description = f"Created {label} with status {status}" if status is not None else f"Created {label}"
        return self.append(
            entity,
            AuditEventKind.CREATION,
            description,
            actor,
            CreationMetadata(to=status),
            timestamp=entity.created_at,
        )

    def derive_transitions(
        self,
        entity: Entity,
        changes: Dict[str, Any],
        actor: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        """
        Append one event per tracked field that the changes would alter.

        Must run before the changes are merged so 'from' is the old value.

        Returns:
            Events appended, in schema order
        """
        events = []
        for field_name, kind in self.schema.tracked_fields.items():
            if field_name not in changes:
                continue
            old = entity.get(field_name)
            new = changes[field_name]
            if old == new:
                continue
            events.append(self.append(
                entity,
                kind,
                describe_transition(kind, field_name, old, new),
                actor,
                TransitionMetadata(from_=old, to=new),
                timestamp=timestamp,
            ))
        return events

    def for_entity(self, entity_id: str) -> List[AuditEvent]:
        """
        Audit trail of one entity, oldest first.

        Returns:
            Events in append order; empty if the entity does not exist
        """
        entity = self._store.get(entity_id)
        if entity is None:
            return []
        return list(entity.audit)

    def query(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        entity_ids: Optional[Iterable[str]] = None,
        kinds: Optional[Iterable[AuditEventKind]] = None,
    ) -> List[AuditEvent]:
        """
        Events across all entities, newest first.

        Args:
            since: Keep events at or after this time
            until: Keep events at or before this time
            entity_ids: Keep events of these entities only
            kinds: Keep events of these kinds only

        Returns:
            Matching events sorted by timestamp descending
        """
        since = ensure_utc(since) if since else None
        until = ensure_utc(until) if until else None
        id_filter = set(entity_ids) if entity_ids is not None else None
        kind_filter = {AuditEventKind(kind) for kind in kinds} if kinds is not None else None

        events = []
        for entity in self._store.list():
            if id_filter is not None and entity.id not in id_filter:
                continue
            for event in entity.audit:
                if since and event.timestamp < since:
                    continue
                if until and event.timestamp > until:
                    continue
                if kind_filter is not None and event.kind not in kind_filter:
                    continue
                events.append(event)

        events.sort(key=lambda event: event.timestamp, reverse=True)
        logger.debug(f"Audit query matched {len(events)} events")
        return events
