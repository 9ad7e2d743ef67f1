"""
Board storage facade.

Opens the three store roots a task board needs under one directory:

    {root}/
        tasks/              TaskStore
        pipelines/          PipelineStore
        pipeline-states/    PipelineStateStore

Each root has the same layout (entities/, _summary.json).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from .config import StoreConfig
from .pipelines import PipelineStateStore, PipelineStore
from .recovery import RecoveryManager, RecoveryResult
from .store import EntityStore
from .tasks import TaskStore

logger = logging.getLogger(__name__)

TASKS_DIRNAME = "tasks"
PIPELINES_DIRNAME = "pipelines"
PIPELINE_STATES_DIRNAME = "pipeline-states"


class BoardStorage:
    """
    All persistent state of one task board.

    Example:
        board = BoardStorage("~/.board")
        board.initialize()          # seeds pipeline templates on first run

        task = board.tasks.create({"title": "Write docs"})
        pipeline = board.pipelines.list()[0]
        board.pipeline_states.start(task.id, pipeline.id)
    """

    def __init__(self, root_dir: Path, config: Optional[StoreConfig] = None):
        """
        Initialize board storage, creating directories if needed.

        Args:
            root_dir: Base directory of the board (``~`` is expanded)
            config: Configuration shared by all three stores
        """
        self.root_dir = Path(root_dir).expanduser()
        self.config = config or StoreConfig()

        self.tasks = TaskStore(self.root_dir / TASKS_DIRNAME, self.config)
        self.pipelines = PipelineStore(self.root_dir / PIPELINES_DIRNAME, self.config)
        self.pipeline_states = PipelineStateStore(
            self.root_dir / PIPELINE_STATES_DIRNAME, self.pipelines, self.config
        )

    def stores(self) -> Dict[str, EntityStore]:
        """The three stores keyed by directory name."""
        return {
            TASKS_DIRNAME: self.tasks,
            PIPELINES_DIRNAME: self.pipelines,
            PIPELINE_STATES_DIRNAME: self.pipeline_states,
        }

    def initialize(self, seed_templates: bool = True) -> Dict[str, int]:
        """
        Load every store once and seed the built-in pipelines.

        Listing also repairs missing or stale indexes, so a board that was
        interrupted mid-write is consistent again afterwards.

        Args:
            seed_templates: Create the template pipelines if none exist

        Returns:
            Number of entities per store
        """
        if seed_templates:
            self.pipelines.initialize_templates()

        counts = {name: len(store.list()) for name, store in self.stores().items()}
        logger.info(
            f"Board storage at {self.root_dir}: {counts[TASKS_DIRNAME]} task(s), "
            f"{counts[PIPELINES_DIRNAME]} pipeline(s), "
            f"{counts[PIPELINE_STATES_DIRNAME]} pipeline state(s)"
        )
        return counts

    def recover(self) -> Dict[str, RecoveryResult]:
        """Run crash recovery on every store."""
        return {name: RecoveryManager(store).recover() for name, store in self.stores().items()}
