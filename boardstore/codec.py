"""
Record codec: one entity to and from the bytes of its file.

Record layout:
    {
      "_checksum": "<sha256 of data, 16 hex chars>",
      "data": {
        "_schema_version": 1,
        "id": "...", "entity_type": "...", "version": 3,
        "created_at": "...", "updated_at": "...",
        "fields": {...},
        "audit": [...]
      }
    }

Encoding is deterministic (sorted keys, fixed indent, canonical UTC
timestamps), so equal entities always produce identical bytes. Decoding
reports every kind of malformed input as DecodeError and nothing else.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Iterable, Type

from .errors import DecodeError
from .schema import BaseSchema
from .types import Entity
from .utils.checksums import compute_checksum, verify_checksum
from .utils.timestamps import ensure_utc, parse_timestamp


def normalize_dates(fields: Dict[str, Any], date_fields: Iterable[str]) -> Dict[str, Any]:
    """
    Convert timestamp text in the given payload fields to aware datetimes.

    Values that are already datetimes are converted to UTC. Missing and None
    values are left alone.

    Raises:
        ValueError: If a date field holds unparsable text
    """
    for name in date_fields:
        value = fields.get(name)
        if isinstance(value, datetime):
            fields[name] = ensure_utc(value)
        elif isinstance(value, str):
            fields[name] = parse_timestamp(value)
    return fields


class RecordCodec:
    """
    Serializes entities of one schema.

    Example:
        >>> codec = RecordCodec(TaskSchema)
        >>> payload = codec.encode(task)
        >>> codec.decode(payload) == task
        True
    """

    def __init__(self, schema: Type[BaseSchema]):
        self.schema = schema
        self._date_fields = tuple(schema.date_fields())

    def encode(self, entity: Entity) -> bytes:
        """
        Serialize an entity into record bytes.

        Args:
            entity: Entity to encode

        Returns:
            UTF-8 JSON bytes with checksum wrapper
        """
        data = entity.to_dict()
        data[self.schema.SCHEMA_VERSION_KEY] = self.schema.schema_version
        wrapper = {
            "_checksum": compute_checksum(data),
            "data": data,
        }
        text = json.dumps(wrapper, indent=2, sort_keys=True, ensure_ascii=False)
        return (text + "\n").encode("utf-8")

    def decode(self, payload: bytes) -> Entity:
        """
        Deserialize record bytes into an entity.

        Args:
            payload: Bytes read from a record file

        Returns:
            Entity instance

        Raises:
            DecodeError: If the payload is not a well-formed record
        """
        try:
            return self._decode(payload)
        except RecursionError:
            raise DecodeError("Record is nested too deeply to decode")

    def _decode(self, payload: bytes) -> Entity:
        try:
            wrapper = json.loads(payload.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise DecodeError(f"Record is not valid UTF-8: {e}")
        except json.JSONDecodeError as e:
            raise DecodeError(f"Record is not valid JSON: {e.msg}", position=e.pos)

        if not isinstance(wrapper, dict) or not isinstance(wrapper.get("data"), dict):
            raise DecodeError("Record has no 'data' object")

        data = wrapper["data"]
        expected = wrapper.get("_checksum")
        if not verify_checksum(data, expected):
            raise DecodeError(
                "Checksum mismatch",
                expected=expected,
                actual=compute_checksum(data),
                entity_id=data.get("id"),
            )

        try:
            entity = Entity.from_dict(data, date_fields=self._date_fields)
        except KeyError as e:
            raise DecodeError(f"Record is missing required field {e}", entity_id=data.get("id"))
        except (TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"Record has an invalid value: {e}", entity_id=data.get("id"))

        if self.schema.entity_type and entity.entity_type != self.schema.entity_type:
            raise DecodeError(
                f"Record holds a '{entity.entity_type}', expected '{self.schema.entity_type}'",
                entity_id=entity.id,
            )

        stored_version = data.get(self.schema.SCHEMA_VERSION_KEY, 1)
        if not isinstance(stored_version, int):
            raise DecodeError("Record has an invalid schema version", entity_id=entity.id)
        if stored_version < self.schema.schema_version:
            migrated, result = self.schema.migrate(entity.fields, from_version=stored_version)
            if not result.valid:
                raise DecodeError(
                    f"Schema migration failed: {'; '.join(result.errors)}",
                    entity_id=entity.id,
                )
            entity.fields = migrated

        return entity
