"""
Entity schemas: which payload fields an entity type has, what values they
accept, and how the store should read them.

A schema class is handed to an EntityStore and does four jobs:

1. Payload checks. ``prepare_payload`` (create) and ``validate_changes``
   (update) turn bad input into a ValidationError before any file is
   touched.
2. Field roles. ``title_field``, ``status_field`` and friends name the
   fields the index and the audit trail care about. ``tracked_fields`` maps
   each field whose changes are audited to its event kind.
3. Index projection. ``project`` turns an entity into its IndexEntry, with
   ``summarize`` adding type-specific extras.
4. Upgrades. Records written under an older ``schema_version`` are upgraded
   on read by ``migrate_vN_to_vM`` classmethods, applied one step at a time.

Usage:
    class NoteSchema(BaseSchema):
        entity_type = 'note'
        id_prefix = 'N'
        schema_version = 2
        fields = {
            'title': Field('title', FieldType.STRING),
            'status': Field('status', FieldType.ENUM, required=False,
                            default='open', choices=['open', 'archived']),
        }
        tracked_fields = {'status': AuditEventKind.STATUS_CHANGE}

        @classmethod
        def migrate_v1_to_v2(cls, data):
            data.setdefault('status', 'open')
            return data

    store = EntityStore(root, NoteSchema)
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import ValidationError
from .types import AuditEventKind, Entity, IndexEntry, RESERVED_KEYS
from .utils.timestamps import ensure_utc, format_timestamp, parse_timestamp

_MIGRATION_NAME = re.compile(r'^migrate_v(\d+)_to_v(\d+)$')


class FieldType(Enum):
    """Value kinds a payload field can hold."""
    STRING = auto()
    INTEGER = auto()
    FLOAT = auto()
    BOOLEAN = auto()
    LIST = auto()
    DICT = auto()
    ENUM = auto()
    DATETIME = auto()  # datetime or ISO 8601 string
    ANY = auto()


_PYTHON_TYPES = {
    FieldType.STRING: str,
    FieldType.INTEGER: int,
    FieldType.FLOAT: (int, float),
    FieldType.BOOLEAN: bool,
    FieldType.LIST: list,
    FieldType.DICT: dict,
    FieldType.ENUM: str,
    FieldType.DATETIME: (datetime, str),
    FieldType.ANY: object,
}


def _is_instance(value: Any, field_type: FieldType) -> bool:
    # bool is an int subclass, but a flag is never a count
    if isinstance(value, bool) and field_type in (FieldType.INTEGER, FieldType.FLOAT):
        return False
    return isinstance(value, _PYTHON_TYPES[field_type])


@dataclass
class Field:
    """
    One payload field of an entity type.

    ``choices`` applies to ENUM fields, ``item_type`` to LIST fields.
    ``validator`` is an extra predicate run after the type checks.
    """

    name: str
    field_type: FieldType
    required: bool = True
    default: Any = None
    choices: Optional[List[Any]] = None
    item_type: Optional[FieldType] = None
    validator: Optional[Callable[[Any], bool]] = None
    description: str = ""

    def validate(self, value: Any) -> Tuple[bool, Optional[str]]:
        """
        Check one value.

        Returns:
            (True, None) if acceptable, else (False, reason)
        """
        if value is None:
            if self.required:
                return False, f"Field '{self.name}' is required"
            return True, None

        for check in (self._check_type, self._check_items, self._check_choice,
                      self._check_timestamp, self._check_custom):
            problem = check(value)
            if problem:
                return False, problem
        return True, None

    def _check_type(self, value: Any) -> Optional[str]:
        if _is_instance(value, self.field_type):
            return None
        return f"Field '{self.name}' expected {self.field_type.name}, got {type(value).__name__}"

    def _check_items(self, value: Any) -> Optional[str]:
        if self.field_type != FieldType.LIST or self.item_type is None:
            return None
        for position, item in enumerate(value):
            if not _is_instance(item, self.item_type):
                return (
                    f"Field '{self.name}[{position}]' expected {self.item_type.name}, "
                    f"got {type(item).__name__}"
                )
        return None

    def _check_choice(self, value: Any) -> Optional[str]:
        if self.field_type == FieldType.ENUM and self.choices and value not in self.choices:
            return f"Field '{self.name}' must be one of {self.choices}, got '{value}'"
        return None

    def _check_timestamp(self, value: Any) -> Optional[str]:
        if self.field_type != FieldType.DATETIME:
            return None
        try:
            if isinstance(value, str):
                parse_timestamp(value)
            else:
                ensure_utc(value)
        except ValueError:
            return f"Field '{self.name}' is not a representable UTC timestamp: '{value}'"
        return None

    def _check_custom(self, value: Any) -> Optional[str]:
        if self.validator is None:
            return None
        try:
            accepted = self.validator(value)
        except Exception as e:
            return f"Field '{self.name}' validation error: {e}"
        return None if accepted else f"Field '{self.name}' failed custom validation"

    def apply_default(self, data: Dict[str, Any]) -> None:
        """Fill a missing or None value with a private copy of the default."""
        if data.get(self.name) is None and self.default is not None:
            data[self.name] = copy.deepcopy(self.default)


@dataclass
class ValidationResult:
    """Outcome of validating or migrating a payload."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    migrated: bool = False
    from_version: Optional[int] = None
    to_version: Optional[int] = None

    def add_error(self, error: str) -> None:
        self.errors.append(error)
        self.valid = False

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def raise_if_invalid(self, entity_type: str) -> None:
        """Raise ValidationError carrying every error message."""
        if not self.valid:
            raise ValidationError(
                f"Invalid {entity_type or 'entity'}: {'; '.join(self.errors)}",
                errors=list(self.errors),
            )


class BaseSchema:
    """
    Base class for entity schemas.

    Subclasses set entity_type, id_prefix, schema_version and fields, name
    the role fields that apply (leave the others None), and list the
    tracked fields in the order their events should be appended.
    """

    schema_version: int = 1
    entity_type: str = ""
    id_prefix: str = "E"
    fields: Dict[str, Field] = {}

    title_field: Optional[str] = "title"
    status_field: Optional[str] = "status"
    priority_field: Optional[str] = None
    assignee_field: Optional[str] = None
    tags_field: Optional[str] = None
    links_field: Optional[str] = None
    comments_field: Optional[str] = None

    tracked_fields: Dict[str, AuditEventKind] = {}

    SCHEMA_VERSION_KEY = "_schema_version"

    @classmethod
    def date_fields(cls) -> List[str]:
        """Names of payload fields holding timestamps."""
        return [name for name, spec in cls.fields.items() if spec.field_type == FieldType.DATETIME]

    @classmethod
    def get_migrations(cls) -> Dict[int, Callable[[Dict], Dict]]:
        """Upgrade steps keyed by the version they start from."""
        steps = {}
        for name in dir(cls):
            match = _MIGRATION_NAME.match(name)
            if match and int(match.group(1)) < int(match.group(2)):
                steps[int(match.group(1))] = getattr(cls, name)
        return steps

    @classmethod
    def validate(cls, data: Dict[str, Any], strict: bool = False) -> ValidationResult:
        """
        Check a complete payload.

        Args:
            data: Payload dictionary
            strict: Also warn about fields the schema does not declare
        """
        result = ValidationResult(valid=True)
        for name, spec in cls.fields.items():
            ok, error = spec.validate(data.get(name))
            if not ok:
                result.add_error(error)
        if strict:
            for name in sorted(set(data) - set(cls.fields)):
                result.add_warning(f"Unknown field '{name}'")
        return result

    @classmethod
    def validate_changes(cls, changes: Dict[str, Any]) -> ValidationResult:
        """
        Check a partial update: only the fields present are checked,
        and a required field may not be cleared.
        """
        result = ValidationResult(valid=True)
        for name, value in changes.items():
            spec = cls.fields.get(name)
            if spec is None:
                continue
            ok, error = spec.validate(value)
            if not ok:
                result.add_error(error)
        return result

    @classmethod
    def apply_defaults(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        for spec in cls.fields.values():
            spec.apply_default(data)
        return data

    @classmethod
    def format_undeclared_dates(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Render datetimes in undeclared fields as stored timestamp text, so
        the caller sees the same value a later read returns.

        Raises:
            ValidationError: If a datetime has no UTC equivalent
        """
        result = ValidationResult(valid=True)
        for name, value in data.items():
            if name in cls.fields or not isinstance(value, datetime):
                continue
            try:
                data[name] = format_timestamp(value)
            except ValueError as e:
                result.add_error(f"Field '{name}' is not a representable UTC timestamp: {e}")
        result.raise_if_invalid(cls.entity_type)
        return data

    @classmethod
    def prepare_payload(cls, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Turn a caller payload into the fields of a new entity.

        Reserved record keys are dropped, defaults applied, and the result
        validated.

        Raises:
            ValidationError: If the payload is not a dict or fails validation
        """
        if not isinstance(payload, dict):
            raise ValidationError(
                f"Payload must be a dict, got {type(payload).__name__}"
            )
        try:
            data = {k: copy.deepcopy(v) for k, v in payload.items() if k not in RESERVED_KEYS}
        except RecursionError:
            raise ValidationError("Payload is nested too deeply to store")
        cls.apply_defaults(data)
        cls.validate(data).raise_if_invalid(cls.entity_type)
        return cls.format_undeclared_dates(data)

    @classmethod
    def migrate(
        cls,
        data: Dict[str, Any],
        from_version: Optional[int] = None,
    ) -> Tuple[Dict[str, Any], ValidationResult]:
        """
        Upgrade payload fields written under an older schema version.

        Versions without a step are skipped. The first failing step stops
        the chain and is reported as an error on the result.

        Returns:
            (upgraded data, result)
        """
        start = 1 if from_version is None else from_version
        result = ValidationResult(valid=True, from_version=start, to_version=cls.schema_version)
        if start >= cls.schema_version:
            return data, result

        steps = cls.get_migrations()
        upgraded = dict(data)
        for version in range(start, cls.schema_version):
            step = steps.get(version)
            if step is None:
                continue
            try:
                upgraded = step(upgraded)
            except Exception as e:
                result.add_error(f"Migration from v{version} failed: {e}")
                return upgraded, result
            result.migrated = True
        return upgraded, result

    @classmethod
    def initial_status(cls, data: Dict[str, Any]) -> Any:
        """Value recorded in the creation event."""
        return data.get(cls.status_field) if cls.status_field else None

    @classmethod
    def summarize(cls, entity: Entity) -> Dict[str, Any]:
        """Schema-specific summary fields for the index (override as needed)."""
        return {}

    @classmethod
    def project(cls, entity: Entity) -> IndexEntry:
        """Project an entity onto its index entry."""
        def pick(name: Optional[str]) -> Any:
            return entity.get(name) if name else None

        tags = pick(cls.tags_field) or ()
        return IndexEntry(
            id=entity.id,
            entity_type=entity.entity_type,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            title=pick(cls.title_field) or "",
            status=pick(cls.status_field),
            priority=pick(cls.priority_field),
            assignee=pick(cls.assignee_field),
            tags=tuple(tags),
            audit_count=len(entity.audit),
            extra=cls.summarize(entity),
        )
