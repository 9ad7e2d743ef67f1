"""
Tests for boardstore recovery module.

Tests temp file cleanup, integrity verification, index repair and
recovery reporting.
"""

import json
import os
import time

from boardstore.indexer import SUMMARY_FILENAME
from boardstore.recovery import RecoveryManager, RecoveryResult


class TestRecovery:
    """Test recovery operations."""

    def test_clean_store_needs_nothing(self, task_store):
        """Test a healthy store reports no recovery needed."""
        task_store.create({"title": "Fine"})
        manager = RecoveryManager(task_store)

        assert not manager.needs_recovery()
        result = manager.recover()
        assert result.success
        assert result.actions_taken == ["No recovery needed - store is clean"]

    def test_empty_store_needs_nothing(self, task_store):
        """Test an empty store without an index is not stale."""
        assert not RecoveryManager(task_store).needs_recovery()

    def test_temp_files_removed(self, task_store):
        """Test leftovers of interrupted writes are deleted."""
        task = task_store.create({"title": "Interrupted"})
        leftover = task_store.entities_dir / f".{task.id}.json.0badc0de.tmp"
        leftover.write_text('{"partial": ')
        index_leftover = task_store.root_dir / f".{SUMMARY_FILENAME}.feedf00d.tmp"
        index_leftover.write_text("[")

        manager = RecoveryManager(task_store)
        assert manager.needs_recovery()
        result = manager.recover()

        assert sorted(result.temp_files_removed) == sorted([leftover.name, index_leftover.name])
        assert not leftover.exists()
        assert not index_leftover.exists()
        assert result.success
        assert task_store.get(task.id) == task

    def test_young_temp_files_kept(self, task_store):
        """Test temp files newer than min_temp_age are left for their writer."""
        leftover = task_store.entities_dir / ".T-1.json.abcd.tmp"
        leftover.write_text("in flight")

        result = RecoveryManager(task_store, min_temp_age=3600).recover()

        assert result.temp_files_removed == []
        assert leftover.exists()

    def test_old_temp_files_removed_with_age_limit(self, task_store):
        """Test the age limit still removes old leftovers."""
        leftover = task_store.entities_dir / ".T-1.json.abcd.tmp"
        leftover.write_text("abandoned")
        old = time.time() - 7200
        os.utime(leftover, (old, old))

        result = RecoveryManager(task_store, min_temp_age=3600).recover()

        assert result.temp_files_removed == [leftover.name]

    def test_corrupted_entity_detected(self, task_store):
        """Test that corrupted records are reported and left in place."""
        good = task_store.create({"title": "Good"})
        bad = task_store.create({"title": "Will be corrupted"})
        path = task_store.entities_dir / f"{bad.id}.json"
        record = json.loads(path.read_text(encoding="utf-8"))
        record["data"]["fields"]["title"] = "CORRUPTED"
        path.write_text(json.dumps(record), encoding="utf-8")

        manager = RecoveryManager(task_store)
        assert manager.verify_store_integrity() == [bad.id]
        result = manager.recover()

        assert not result.success
        assert result.corrupted_entities == [bad.id]
        assert path.exists()
        assert any("corrupted record" in action.lower() for action in result.actions_taken)
        assert [t.id for t in task_store.list()] == [good.id]

    def test_missing_index_rebuilt(self, task_store):
        """Test a store without an index gets one."""
        tasks = [task_store.create({"title": f"Task {i}"}) for i in range(3)]
        (task_store.root_dir / SUMMARY_FILENAME).unlink()

        manager = RecoveryManager(task_store)
        assert manager.needs_index_recovery()
        result = manager.recover()

        assert result.index_rebuilt
        assert [entry.id for entry in task_store.index.read_index()] == [t.id for t in tasks]
        assert not manager.needs_recovery()

    def test_stale_index_rebuilt(self, task_store):
        """Test an index out of line with the records is rewritten."""
        task = task_store.create({"title": "Indexed"})
        orphan = task_store.create({"title": "Orphan"})
        (task_store.entities_dir / f"{orphan.id}.json").unlink()
        task_store.index.write_index([
            task_store.schema.project(task),
            task_store.schema.project(orphan),
        ])

        result = RecoveryManager(task_store).recover()

        assert result.index_rebuilt
        assert [entry.id for entry in task_store.index.read_index()] == [task.id]

    def test_recover_is_idempotent(self, task_store):
        """Test a second run finds nothing to do."""
        task_store.create({"title": "Once"})
        (task_store.root_dir / SUMMARY_FILENAME).unlink()
        manager = RecoveryManager(task_store)

        manager.recover()
        second = manager.recover()

        assert second.success
        assert not second.index_rebuilt
        assert second.temp_files_removed == []


class TestRecoveryResult:
    """Test RecoveryResult defaults."""

    def test_defaults(self):
        result = RecoveryResult()
        assert result.success
        assert result.actions_taken == []

    def test_add_action(self):
        result = RecoveryResult()
        result.add_action("did a thing")
        assert result.actions_taken == ["did a thing"]
