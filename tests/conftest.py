"""
Shared pytest setup for the boardstore tests.

Tests are marked by the directory they live in, so a quick run can be
selected with ``pytest -m unit`` and the end-to-end scenarios with
``pytest -m integration``. Everything that touches the filesystem works
inside pytest's ``tmp_path``.
"""

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from boardstore import BoardStorage, DurabilityMode, StoreConfig, TaskStore  # noqa: E402


MARKERS = {
    "unit": "Fast, isolated tests of one module",
    "integration": "End-to-end store scenarios on a real directory",
    "slow": "Tests that take more than a few seconds",
}


def pytest_configure(config):
    for name, description in MARKERS.items():
        config.addinivalue_line("markers", f"{name}: {description}")


def pytest_collection_modifyitems(config, items):
    """Mark each test with the name of its top-level test directory."""
    for item in items:
        parts = Path(str(item.fspath)).parts
        for marker in ("unit", "integration"):
            if marker in parts:
                item.add_marker(getattr(pytest.mark, marker))
                break


@pytest.fixture
def store_config():
    """No fsync: durability is exercised separately, speed matters here."""
    return StoreConfig(durability=DurabilityMode.RELAXED)


@pytest.fixture
def task_store(tmp_path, store_config):
    """An empty task store rooted in the test's temp directory."""
    return TaskStore(tmp_path / "tasks", store_config)


@pytest.fixture
def board(tmp_path, store_config):
    """Empty board storage (tasks, pipelines and pipeline states)."""
    return BoardStorage(tmp_path / "board", store_config)
