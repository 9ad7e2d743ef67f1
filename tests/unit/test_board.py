"""
Unit tests for boardstore/board.py
"""

from boardstore import BoardStorage
from boardstore.board import PIPELINE_STATES_DIRNAME, PIPELINES_DIRNAME, TASKS_DIRNAME
from boardstore.indexer import SUMMARY_FILENAME
from boardstore.pipelines import PIPELINE_TEMPLATES


class TestBoardStorage:
    """Test the board facade."""

    def test_directories_created(self, board):
        for name in (TASKS_DIRNAME, PIPELINES_DIRNAME, PIPELINE_STATES_DIRNAME):
            assert (board.root_dir / name / "entities").is_dir()

    def test_home_expanded(self, tmp_path, monkeypatch, store_config):
        monkeypatch.setenv("HOME", str(tmp_path))
        board = BoardStorage("~/board", store_config)
        assert board.root_dir == tmp_path / "board"

    def test_initialize_seeds_templates(self, board):
        counts = board.initialize()
        assert counts == {
            TASKS_DIRNAME: 0,
            PIPELINES_DIRNAME: len(PIPELINE_TEMPLATES),
            PIPELINE_STATES_DIRNAME: 0,
        }

    def test_initialize_without_seeding(self, board):
        counts = board.initialize(seed_templates=False)
        assert counts[PIPELINES_DIRNAME] == 0

    def test_initialize_repairs_indexes(self, board):
        board.initialize()
        task = board.tasks.create({"title": "Survivor"})
        (board.tasks.root_dir / SUMMARY_FILENAME).unlink()

        reopened = BoardStorage(board.root_dir, board.config)
        counts = reopened.initialize()

        assert counts[TASKS_DIRNAME] == 1
        assert [entry.id for entry in reopened.tasks.index.read_index()] == [task.id]

    def test_stores_share_config(self, board):
        assert all(store.config is board.config for store in board.stores().values())

    def test_recover_every_store(self, board):
        board.tasks.create({"title": "One"})
        leftover = board.pipelines.entities_dir / ".PL-1.json.0000.tmp"
        leftover.write_text("partial")

        results = board.recover()

        assert set(results) == {TASKS_DIRNAME, PIPELINES_DIRNAME, PIPELINE_STATES_DIRNAME}
        assert results[PIPELINES_DIRNAME].temp_files_removed == [leftover.name]
        assert all(result.success for result in results.values())
        assert not leftover.exists()
