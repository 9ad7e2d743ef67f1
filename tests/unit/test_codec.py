"""
Unit tests for boardstore/codec.py

Tests record encoding and decoding including:
- Deterministic output and checksum wrapper
- Every malformed-input path reported as DecodeError
- Schema migrations applied on read
"""

import json
from datetime import datetime, timezone

import pytest

from boardstore import DecodeError, Entity, TaskSchema
from boardstore.audit import AuditLogger
from boardstore.codec import RecordCodec, normalize_dates
from boardstore.schema import BaseSchema, Field, FieldType
from boardstore.utils.checksums import compute_checksum


def make_task(**fields):
    created = datetime(2026, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
    payload = TaskSchema.prepare_payload({"title": "Codec", **fields})
    normalize_dates(payload, TaskSchema.date_fields())
    entity = Entity(
        id="T-20260102-030405-0123456789abcdef",
        entity_type="task",
        created_at=created,
        updated_at=created,
        fields=payload,
    )
    AuditLogger(store=None, schema=TaskSchema).record_creation(entity, actor="tester")
    return entity


def rewrap(data):
    """Wrap record data with a valid checksum, as the codec would."""
    return json.dumps({"_checksum": compute_checksum(data), "data": data}).encode("utf-8")


class TestEncode:
    """Test serialization."""

    def test_round_trip(self):
        """Test decode(encode(e)) == e."""
        codec = RecordCodec(TaskSchema)
        task = make_task(tags=["x"], assignee="amy", due_date="2026-05-01T00:00:00+02:00")
        assert codec.decode(codec.encode(task)) == task

    def test_deterministic(self):
        """Test equal entities give identical bytes."""
        codec = RecordCodec(TaskSchema)
        task = make_task()
        assert codec.encode(task) == codec.encode(task.copy())

    def test_layout(self):
        """Test checksum wrapper, schema version and canonical timestamps."""
        codec = RecordCodec(TaskSchema)
        record = json.loads(codec.encode(make_task()))

        assert set(record) == {"_checksum", "data"}
        assert record["_checksum"] == compute_checksum(record["data"])
        assert record["data"]["_schema_version"] == TaskSchema.schema_version
        assert record["data"]["created_at"] == "2026-01-02T03:04:05.678901+00:00"
        assert record["data"]["audit"][0]["kind"] == "creation"

    def test_date_field_rendered_in_utc(self):
        """Test payload datetimes are stored as canonical UTC text."""
        codec = RecordCodec(TaskSchema)
        record = json.loads(codec.encode(make_task(due_date="2026-05-01T02:00:00+02:00")))
        assert record["data"]["fields"]["due_date"] == "2026-05-01T00:00:00.000000+00:00"

    def test_ends_with_newline(self):
        """Test records are newline-terminated text."""
        assert RecordCodec(TaskSchema).encode(make_task()).endswith(b"\n")


class TestDecodeErrors:
    """Test malformed records."""

    @pytest.mark.parametrize("payload", [
        b"",
        b"{",
        b"\xff\xfe not utf-8",
        b"[]",
        b'{"data": 5}',
        b'{"_checksum": "abc"}',
    ])
    def test_garbage(self, payload):
        """Test undecodable bytes raise DecodeError."""
        with pytest.raises(DecodeError):
            RecordCodec(TaskSchema).decode(payload)

    def test_truncated(self):
        """Test a torn write is detected."""
        data = RecordCodec(TaskSchema).encode(make_task())
        with pytest.raises(DecodeError):
            RecordCodec(TaskSchema).decode(data[: len(data) // 2])

    def test_checksum_mismatch(self):
        """Test edited data is detected."""
        record = json.loads(RecordCodec(TaskSchema).encode(make_task()))
        record["data"]["fields"]["title"] = "Tampered"

        with pytest.raises(DecodeError, match="Checksum mismatch"):
            RecordCodec(TaskSchema).decode(json.dumps(record).encode())

    def test_missing_required_field(self):
        """Test a record without timestamps is malformed."""
        data = json.loads(RecordCodec(TaskSchema).encode(make_task()))["data"]
        del data["created_at"]

        with pytest.raises(DecodeError, match="missing required field"):
            RecordCodec(TaskSchema).decode(rewrap(data))

    def test_unparsable_timestamp(self):
        """Test a bad timestamp is malformed."""
        data = json.loads(RecordCodec(TaskSchema).encode(make_task()))["data"]
        data["updated_at"] = "yesterday"

        with pytest.raises(DecodeError):
            RecordCodec(TaskSchema).decode(rewrap(data))

    def test_unknown_event_kind(self):
        """Test an audit event outside the closed set is malformed."""
        data = json.loads(RecordCodec(TaskSchema).encode(make_task()))["data"]
        data["audit"][0]["kind"] = "teleported"

        with pytest.raises(DecodeError):
            RecordCodec(TaskSchema).decode(rewrap(data))

    def test_wrong_entity_type(self):
        """Test a record of another type is rejected."""
        data = json.loads(RecordCodec(TaskSchema).encode(make_task()))["data"]
        data["entity_type"] = "pipeline"

        with pytest.raises(DecodeError, match="expected 'task'"):
            RecordCodec(TaskSchema).decode(rewrap(data))

    def test_timestamp_outside_utc_range(self):
        """Test a time that has no UTC equivalent is malformed."""
        data = json.loads(RecordCodec(TaskSchema).encode(make_task()))["data"]
        data["created_at"] = "0001-01-01T00:00:00+05:00"

        with pytest.raises(DecodeError):
            RecordCodec(TaskSchema).decode(rewrap(data))

    @pytest.mark.parametrize("payload", [
        b"[" * 100000,
        b"[" * 100000 + b"]" * 100000,
        b'{"data": ' + b'{"a": ' * 100000 + b"1" + b"}" * 100001,
    ], ids=["unclosed", "balanced", "nested-data"])
    def test_deeply_nested(self, payload):
        """Test nesting past the interpreter's recursion limit is malformed."""
        with pytest.raises(DecodeError):
            RecordCodec(TaskSchema).decode(payload)

    def test_non_integer_version(self):
        """Test version must be an integer."""
        data = json.loads(RecordCodec(TaskSchema).encode(make_task()))["data"]
        data["version"] = "2"

        with pytest.raises(DecodeError):
            RecordCodec(TaskSchema).decode(rewrap(data))


class NoteSchemaV2(BaseSchema):
    entity_type = "note"
    id_prefix = "N"
    schema_version = 2
    fields = {
        "title": Field("title", FieldType.STRING, required=True),
        "status": Field("status", FieldType.ENUM, required=False, default="open",
                        choices=["open", "archived"]),
    }

    @classmethod
    def migrate_v1_to_v2(cls, data):
        data.setdefault("status", "open")
        return data


class BrokenMigrationSchema(NoteSchemaV2):
    @classmethod
    def migrate_v1_to_v2(cls, data):
        raise RuntimeError("cannot migrate")


class TestMigration:
    """Test schema migrations on read."""

    def _v1_record(self):
        created = "2026-01-01T00:00:00.000000+00:00"
        data = {
            "_schema_version": 1,
            "id": "N-1",
            "entity_type": "note",
            "version": 1,
            "created_at": created,
            "updated_at": created,
            "fields": {"title": "Old note"},
            "audit": [],
        }
        return rewrap(data)

    def test_old_record_migrated(self):
        """Test fields gain what the newer schema expects."""
        note = RecordCodec(NoteSchemaV2).decode(self._v1_record())
        assert note["status"] == "open"

    def test_migration_failure_is_decode_error(self):
        """Test a failing migration makes the record unreadable, not the process."""
        with pytest.raises(DecodeError, match="migration failed"):
            RecordCodec(BrokenMigrationSchema).decode(self._v1_record())

    def test_re_encode_writes_current_version(self):
        """Test migrated records are stored at the current version."""
        codec = RecordCodec(NoteSchemaV2)
        note = codec.decode(self._v1_record())
        assert json.loads(codec.encode(note))["data"]["_schema_version"] == 2
