"""
Unit tests for boardstore/indexer.py

Tests the summary index manager including:
- Absent and malformed index files read as empty
- Pure, order-independent rebuilds
- Byte-identical rewrites
- Swallowed write failures
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from boardstore import Entity, IndexEntry, TaskSchema
from boardstore.indexer import SUMMARY_FILENAME, IndexManager


BASE = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)


def task(n, **fields):
    created = BASE + timedelta(minutes=n)
    return Entity(
        id=f"T-{n:04d}",
        entity_type="task",
        created_at=created,
        updated_at=created,
        fields={"title": f"Task {n}", "status": "backlog", "priority": 100, "tags": [], **fields},
    )


class TestReadIndex:
    """Test loading the index."""

    def test_absent_is_empty(self, tmp_path):
        """Test a missing file is not an error."""
        manager = IndexManager(tmp_path, TaskSchema)
        assert manager.read_index() == []
        assert manager.get_stats()["misses"] == 1

    @pytest.mark.parametrize("content", ["", "not json", '{"entries": []}', '[{"title": "no id"}]'])
    def test_malformed_is_empty(self, tmp_path, content, caplog):
        """Test unusable content reads as empty with a warning."""
        (tmp_path / SUMMARY_FILENAME).write_text(content, encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            assert IndexManager(tmp_path, TaskSchema).read_index() == []
        assert caplog.records

    def test_deeply_nested_is_empty(self, tmp_path):
        """Test nesting past the recursion limit reads as empty."""
        (tmp_path / SUMMARY_FILENAME).write_text("[" * 100000 + "]" * 100000, encoding="utf-8")
        assert IndexManager(tmp_path, TaskSchema).read_index() == []

    def test_round_trip(self, tmp_path):
        """Test written entries read back equal."""
        manager = IndexManager(tmp_path, TaskSchema)
        entries = manager.rebuild_from_scan([task(1, tags=["a"]), task(2, assignee="zoe")])

        assert manager.write_index(entries)
        assert manager.read_index() == entries
        assert manager.get_stats()["hits"] == 1


class TestRebuild:
    """Test rebuilding from entities."""

    def test_sorted_by_creation_then_id(self, tmp_path):
        """Test ordering is independent of scan order."""
        manager = IndexManager(tmp_path, TaskSchema)
        entities = [task(3), task(1), task(2)]

        assert [e.id for e in manager.rebuild_from_scan(entities)] == ["T-0001", "T-0002", "T-0003"]

    def test_ties_broken_by_id(self, tmp_path):
        """Test equal creation times order by id."""
        manager = IndexManager(tmp_path, TaskSchema)
        a, b = task(1), task(1)
        b.id = "T-0000"

        assert [e.id for e in manager.rebuild_from_scan([a, b])] == ["T-0000", "T-0001"]

    def test_projection(self, tmp_path):
        """Test an entry carries the summary fields."""
        entity = task(5, status="review", assignee="li", tags=["api", "bug"], priority=7)
        entry = IndexManager(tmp_path, TaskSchema).rebuild_from_scan([entity])[0]

        assert entry == IndexEntry(
            id="T-0005",
            entity_type="task",
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            title="Task 5",
            status="review",
            priority=7,
            assignee="li",
            tags=("api", "bug"),
            audit_count=0,
            extra={"comment_count": 0, "link_count": 0},
        )

    def test_rebuild_twice_is_byte_identical(self, tmp_path):
        """Test idempotence of rebuild + write."""
        manager = IndexManager(tmp_path, TaskSchema)
        entities = [task(n) for n in range(5)]

        manager.rebuild(entities)
        first = (tmp_path / SUMMARY_FILENAME).read_bytes()
        manager.rebuild(list(reversed(entities)))
        second = (tmp_path / SUMMARY_FILENAME).read_bytes()

        assert first == second
        assert manager.get_stats()["rebuilds"] == 2

    def test_empty_rebuild(self, tmp_path):
        """Test rebuilding nothing writes an empty index."""
        manager = IndexManager(tmp_path, TaskSchema)
        assert manager.rebuild([]) == []
        assert (tmp_path / SUMMARY_FILENAME).read_text(encoding="utf-8") == "[]\n"


class TestIncremental:
    """Test the replace-in-place helpers."""

    def test_upsert_replaces_by_id(self, tmp_path):
        """Test upsert keeps one entry per id, in order."""
        manager = IndexManager(tmp_path, TaskSchema)
        entries = manager.rebuild_from_scan([task(1), task(2)])
        changed = TaskSchema.project(task(1, status="done"))

        result = IndexManager.upsert(entries, changed)

        assert [e.id for e in result] == ["T-0001", "T-0002"]
        assert result[0].status == "done"

    def test_upsert_adds_new(self, tmp_path):
        """Test upsert inserts in creation order."""
        entries = IndexManager(tmp_path, TaskSchema).rebuild_from_scan([task(1), task(3)])
        result = IndexManager.upsert(entries, TaskSchema.project(task(2)))
        assert [e.id for e in result] == ["T-0001", "T-0002", "T-0003"]

    def test_discard(self, tmp_path):
        """Test discard drops one id and ignores unknown ones."""
        entries = IndexManager(tmp_path, TaskSchema).rebuild_from_scan([task(1), task(2)])

        assert [e.id for e in IndexManager.discard(entries, "T-0001")] == ["T-0002"]
        assert IndexManager.discard(entries, "T-9999") == entries


class TestWriteFailures:
    """Test that the index never fails its caller."""

    def test_write_failure_swallowed(self, tmp_path, caplog):
        """Test an OSError is logged and reported as False."""
        (tmp_path / SUMMARY_FILENAME).mkdir()
        manager = IndexManager(tmp_path, TaskSchema)

        with caplog.at_level(logging.ERROR):
            assert manager.write_index([TaskSchema.project(task(1))]) is False

        assert manager.get_stats()["write_failures"] == 1
        assert any("Failed to write index" in r.message for r in caplog.records)
        assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]
