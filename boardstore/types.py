"""
Entity types for the entity store.

Provides the Entity record, its embedded AuditEvent trail (with metadata
modelled as one small dataclass per event kind), and the IndexEntry
projection kept in the summary index. All types serialize to
JSON-compatible dictionaries.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, Union

from .utils.timestamps import format_timestamp, parse_timestamp


class AuditEventKind(str, Enum):
    """Closed set of audit event kinds."""

    CREATION = "creation"
    STATUS_CHANGE = "status_change"
    ASSIGNMENT_CHANGE = "assignment_change"
    PRIORITY_CHANGE = "priority_change"
    LINK_ADDED = "link_added"
    COMMENT_ADDED = "comment_added"


# =============================================================================
# AUDIT METADATA VARIANTS
# =============================================================================
# One variant per kind family; each carries only the fields that kind needs.


@dataclass(frozen=True)
class CreationMetadata:
    """Initial status of a newly created entity."""

    to: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"to": self.to}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CreationMetadata:
        return cls(to=data.get("to"))


@dataclass(frozen=True)
class TransitionMetadata:
    """Old and new value of a tracked field (status, assignee, priority)."""

    from_: Any = None
    to: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.from_, "to": self.to}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TransitionMetadata:
        return cls(from_=data.get("from"), to=data.get("to"))


@dataclass(frozen=True)
class LinkMetadata:
    """A link or attachment added to an entity."""

    link_id: str
    url: str
    title: str = ""
    link_type: str = "other"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "link_id": self.link_id,
            "url": self.url,
            "title": self.title,
            "link_type": self.link_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LinkMetadata:
        return cls(
            link_id=data["link_id"],
            url=data["url"],
            title=data.get("title", ""),
            link_type=data.get("link_type", "other"),
        )


@dataclass(frozen=True)
class CommentMetadata:
    """A comment added to an entity."""

    comment_id: str
    author: str
    excerpt: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "comment_id": self.comment_id,
            "author": self.author,
            "excerpt": self.excerpt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CommentMetadata:
        return cls(
            comment_id=data["comment_id"],
            author=data["author"],
            excerpt=data.get("excerpt", ""),
        )


AuditMetadata = Union[CreationMetadata, TransitionMetadata, LinkMetadata, CommentMetadata]

METADATA_BY_KIND: Dict[AuditEventKind, Type] = {
    AuditEventKind.CREATION: CreationMetadata,
    AuditEventKind.STATUS_CHANGE: TransitionMetadata,
    AuditEventKind.ASSIGNMENT_CHANGE: TransitionMetadata,
    AuditEventKind.PRIORITY_CHANGE: TransitionMetadata,
    AuditEventKind.LINK_ADDED: LinkMetadata,
    AuditEventKind.COMMENT_ADDED: CommentMetadata,
}


@dataclass(frozen=True)
class AuditEvent:
    """
    Immutable record of one meaningful change to an entity.

    Events live inside the entity record they describe, in the order their
    triggering mutations were applied.
    """

    id: str
    entity_id: str
    kind: AuditEventKind
    description: str
    actor: str
    timestamp: datetime
    metadata: AuditMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "kind": self.kind.value,
            "description": self.description,
            "actor": self.actor,
            "timestamp": format_timestamp(self.timestamp),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AuditEvent:
        """
        Deserialize event from dictionary.

        Raises:
            KeyError: If a required field is missing
            ValueError: If the kind or timestamp is invalid
        """
        kind = AuditEventKind(data["kind"])
        metadata_cls = METADATA_BY_KIND[kind]
        return cls(
            id=data["id"],
            entity_id=data["entity_id"],
            kind=kind,
            description=data.get("description", ""),
            actor=data.get("actor", ""),
            timestamp=parse_timestamp(data["timestamp"]),
            metadata=metadata_cls.from_dict(data.get("metadata") or {}),
        )


# =============================================================================
# ENTITY
# =============================================================================

# Keys of the record that callers may never set through a payload
RESERVED_KEYS = frozenset({
    'id', 'entity_type', 'version', 'created_at', 'updated_at', 'audit',
})


@dataclass
class Entity:
    """
    A durable record stored in its own file.

    The store treats ``fields`` as an opaque document, apart from the few
    well-known fields its schema names (status, assignee, tags, ...).
    """

    id: str
    entity_type: str
    created_at: datetime
    updated_at: datetime
    version: int = 1
    fields: Dict[str, Any] = field(default_factory=dict)
    audit: List[AuditEvent] = field(default_factory=list)

    def get(self, name: str, default: Any = None) -> Any:
        """Read a payload field."""
        return self.fields.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def copy(self) -> Entity:
        """Deep copy, so a mutation attempt can be abandoned without side effects."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize entity to JSON-serializable dictionary.

        Datetime values among the payload fields are rendered as text.
        """
        payload = {
            name: format_timestamp(value) if isinstance(value, datetime) else value
            for name, value in self.fields.items()
        }
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "version": self.version,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "fields": payload,
            "audit": [event.to_dict() for event in self.audit],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], date_fields: Iterable[str] = ()) -> Entity:
        """
        Deserialize entity from dictionary.

        Args:
            data: Dictionary produced by to_dict()
            date_fields: Payload field names holding timestamps

        Raises:
            KeyError: If a required field is missing
            ValueError, TypeError: If a value has the wrong shape
        """
        if not isinstance(data.get("fields", {}), dict):
            raise TypeError("'fields' must be an object")
        payload = dict(data.get("fields") or {})
        for name in date_fields:
            value = payload.get(name)
            if value is not None:
                payload[name] = parse_timestamp(value)

        version = data.get("version", 1)
        if not isinstance(version, int):
            raise TypeError(f"'version' must be an integer, got {type(version).__name__}")

        return cls(
            id=data["id"],
            entity_type=data["entity_type"],
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            version=version,
            fields=payload,
            audit=[AuditEvent.from_dict(item) for item in data.get("audit", [])],
        )


# =============================================================================
# INDEX ENTRY
# =============================================================================


@dataclass(frozen=True)
class IndexEntry:
    """Projection of one entity kept in the summary index."""

    id: str
    entity_type: str
    created_at: datetime
    updated_at: datetime
    title: str = ""
    status: Any = None
    priority: Any = None
    assignee: Optional[str] = None
    tags: Tuple[str, ...] = ()
    audit_count: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.created_at, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "assignee": self.assignee,
            "tags": list(self.tags),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "audit_count": self.audit_count,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> IndexEntry:
        return cls(
            id=data["id"],
            entity_type=data.get("entity_type", ""),
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            title=data.get("title", ""),
            status=data.get("status"),
            priority=data.get("priority"),
            assignee=data.get("assignee"),
            tags=tuple(data.get("tags") or ()),
            audit_count=data.get("audit_count", 0),
            extra=dict(data.get("extra") or {}),
        )
