"""
Pipeline definitions and per-task pipeline progress.

A pipeline is an ordered list of stages a task moves through (development,
review, testing, ...). Progress of one task through one pipeline is kept in
a separate pipeline-state entity so a task record never has to be rewritten
when its pipeline advances.

Both live in their own store roots, with the same layout, index and audit
behaviour as tasks.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import StoreConfig
from .errors import NotFoundError, ValidationError
from .schema import BaseSchema, Field, FieldType
from .store import EntityStore
from .types import AuditEventKind, Entity
from .utils.id_generation import is_valid_id
from .utils.timestamps import format_timestamp, utc_now

logger = logging.getLogger(__name__)


def _valid_stages(stages: List[Any]) -> bool:
    """Each stage is an object with a non-empty string id, unique within the pipeline."""
    seen = set()
    for stage in stages:
        if not isinstance(stage, dict):
            return False
        stage_id = stage.get('id')
        if not isinstance(stage_id, str) or not stage_id or stage_id in seen:
            return False
        seen.add(stage_id)
    return True


def _stage(stage_id, name, persona, auto_advance, max_retry_attempts, action_type, description, outputs):
    return {
        'id': stage_id,
        'name': name,
        'persona': persona,
        'auto_advance': auto_advance,
        'max_retry_attempts': max_retry_attempts,
        'action': {
            'type': action_type,
            'description': description,
            'output_requirements': outputs,
        },
    }


# Built-in pipelines, created when the pipeline store is empty
PIPELINE_TEMPLATES: List[Dict[str, Any]] = [
    {
        'name': 'Standard Development',
        'description': 'Developer -> QA Engineer -> Security Reviewer -> Human Review',
        'is_active': True,
        'stages': [
            _stage('dev', 'Development', 'general-developer', True, 3, 'work',
                   'Implement the feature or fix described in the task', ['PR', 'tests']),
            _stage('qa', 'Quality Assurance', 'qa-engineer', False, 2, 'review',
                   'Review the implementation for quality, test coverage, and functionality',
                   ['approval', 'test_results']),
            _stage('security', 'Security Review', 'security-reviewer', False, 2, 'review',
                   'Review for security vulnerabilities and compliance', ['security_approval']),
        ],
    },
    {
        'name': 'Documentation Only',
        'description': 'Tech Writer -> Review',
        'is_active': True,
        'stages': [
            _stage('writing', 'Technical Writing', 'tech-writer', True, 3, 'work',
                   'Write comprehensive documentation', ['documentation']),
        ],
    },
    {
        'name': 'Bug Fix Pipeline',
        'description': 'Bug Fixer -> QA Testing -> Deploy',
        'is_active': True,
        'stages': [
            _stage('debug', 'Debug & Fix', 'bug-fixer', True, 3, 'work',
                   'Investigate and fix the reported bug', ['PR', 'root_cause_analysis']),
            _stage('test', 'Bug Verification', 'qa-engineer', False, 2, 'test',
                   'Verify the bug is fixed and no regressions introduced', ['test_confirmation']),
        ],
    },
]


class PipelineSchema(BaseSchema):
    """Schema for pipeline definitions."""

    schema_version = 1
    entity_type = 'pipeline'
    id_prefix = 'PL'

    fields = {
        'name': Field('name', FieldType.STRING, required=True, validator=lambda name: bool(name.strip())),
        'description': Field('description', FieldType.STRING, required=False, default=''),
        'stages': Field('stages', FieldType.LIST, required=True, default=[], validator=_valid_stages),
        'is_active': Field('is_active', FieldType.BOOLEAN, required=True, default=True),
    }

    title_field = 'name'
    status_field = None

    @classmethod
    def summarize(cls, entity: Entity) -> Dict[str, Any]:
        return {
            'is_active': entity.get('is_active', True),
            'stage_count': len(entity.get('stages') or []),
        }


class PipelineStateSchema(BaseSchema):
    """
    Schema for the progress of one task through one pipeline.

    The current stage plays the role of the status: moving to another stage
    is recorded in the audit trail like a status change.
    """

    schema_version = 1
    entity_type = 'pipeline_state'
    id_prefix = 'PS'

    fields = {
        'task_id': Field('task_id', FieldType.STRING, required=True),
        'pipeline_id': Field('pipeline_id', FieldType.STRING, required=True),
        'current_stage_id': Field('current_stage_id', FieldType.STRING, required=True),
        'stage_attempts': Field('stage_attempts', FieldType.DICT, required=True, default={}),
        'stage_history': Field('stage_history', FieldType.LIST, required=True, default=[],
                               item_type=FieldType.DICT),
        'is_stuck': Field('is_stuck', FieldType.BOOLEAN, required=True, default=False),
        'stuck_reason': Field('stuck_reason', FieldType.STRING, required=False),
    }

    title_field = None
    status_field = 'current_stage_id'

    tracked_fields = {
        'current_stage_id': AuditEventKind.STATUS_CHANGE,
    }

    @classmethod
    def summarize(cls, entity: Entity) -> Dict[str, Any]:
        return {
            'task_id': entity.get('task_id'),
            'pipeline_id': entity.get('pipeline_id'),
            'is_stuck': entity.get('is_stuck', False),
        }


class PipelineStore(EntityStore):
    """Entity store for pipeline definitions."""

    def __init__(self, root_dir: Path, config: Optional[StoreConfig] = None):
        super().__init__(root_dir, PipelineSchema, config)

    def active(self) -> List[Entity]:
        """Pipelines that can be assigned to tasks."""
        return [pipeline for pipeline in self.list() if pipeline.get('is_active', True)]

    def initialize_templates(self, actor: Optional[str] = None) -> int:
        """
        Create the built-in pipelines if the store has none.

        Returns:
            Number of pipelines created (0 when pipelines already exist)
        """
        existing = self.list()
        if existing:
            logger.info(f"Pipelines loaded: {len(existing)} found")
            return 0

        logger.info("No pipelines found, initializing with templates")
        for template in PIPELINE_TEMPLATES:
            self.create(copy.deepcopy(template), actor=actor)
        logger.info(f"Created {len(PIPELINE_TEMPLATES)} pipeline templates")
        return len(PIPELINE_TEMPLATES)


class PipelineStateStore(EntityStore):
    """
    Entity store for per-task pipeline progress.

    There is at most one state per task; the helpers below address states by
    task ID rather than by their own entity ID, and hold a per-task lock
    across each lookup and write.

    Example:
        >>> states = PipelineStateStore(root / "pipeline-states", pipelines)
        >>> state = states.start(task.id, pipeline.id)
        >>> state["current_stage_id"]
        'dev'
    """

    def __init__(
        self,
        root_dir: Path,
        pipelines: PipelineStore,
        config: Optional[StoreConfig] = None,
    ):
        super().__init__(root_dir, PipelineStateSchema, config)
        self.pipelines = pipelines

    def get_for_task(self, task_id: str) -> Optional[Entity]:
        """
        Pipeline state of a task.

        Returns:
            The state, or None if the task has not entered a pipeline
        """
        for state in self.list():
            if state.get('task_id') == task_id:
                return state
        return None

    def require_for_task(self, task_id: str) -> Entity:
        """
        Raises:
            NotFoundError: If the task has no pipeline state
        """
        state = self.get_for_task(task_id)
        if state is None:
            raise NotFoundError(f"No pipeline state for task {task_id}", task_id=task_id)
        return state

    def save_for_task(
        self,
        task_id: str,
        changes: Dict[str, Any],
        actor: Optional[str] = None,
    ) -> Entity:
        """
        Create the task's state, or update it if one exists.

        Args:
            task_id: Task the state belongs to
            changes: State fields to set (task_id is ignored)
            actor: Who made the change

        Raises:
            ValidationError: If the task ID or the resulting state is invalid
            StorageError: (retryable) if the task lock is not acquired in time
        """
        if not is_valid_id(task_id):
            raise ValidationError(f"Invalid task ID: {task_id!r}", task_id=task_id)
        changes = {key: value for key, value in changes.items() if key != 'task_id'}
        with self._task_lock(task_id):
            existing = self.get_for_task(task_id)
            if existing is None:
                return self.create({'task_id': task_id, **changes}, actor=actor)
            updated = self.update(existing.id, changes, actor=actor, expected_version=existing.version)
            if updated is None:
                # Removed by ID between lookup and update
                return self.create({'task_id': task_id, **changes}, actor=actor)
            return updated

    def delete_for_task(self, task_id: str) -> bool:
        """
        Delete the task's state.

        Returns:
            True if a state was deleted, False if there was none
        """
        if not is_valid_id(task_id):
            return False
        with self._task_lock(task_id):
            existing = self.get_for_task(task_id)
            if existing is None:
                return False
            return self.remove(existing.id)

    def _task_lock(self, task_id: str):
        # Entity IDs never start with "task-", so the key cannot collide
        return self._exclusive(f"task-{task_id}")

    def start(self, task_id: str, pipeline_id: str, actor: Optional[str] = None) -> Entity:
        """
        Put a task at the first stage of a pipeline.

        Any previous progress of the task is replaced.

        Raises:
            NotFoundError: If the pipeline does not exist
            ValidationError: If the pipeline has no stages
        """
        pipeline = self.pipelines.require(pipeline_id)
        stages = pipeline.get('stages') or []
        if not stages:
            raise ValidationError(
                f"Pipeline {pipeline_id} has no stages",
                pipeline_id=pipeline_id,
            )

        first = stages[0]
        history_entry = {
            'stage_id': first['id'],
            'persona': first.get('persona', ''),
            'started_at': format_timestamp(utc_now()),
            'attempt': 1,
        }
        logger.debug(f"Starting task {task_id} in pipeline {pipeline_id} at stage {first['id']}")
        return self.save_for_task(
            task_id,
            {
                'pipeline_id': pipeline_id,
                'current_stage_id': first['id'],
                'stage_attempts': {first['id']: 1},
                'stage_history': [history_entry],
                'is_stuck': False,
                'stuck_reason': None,
            },
            actor=actor,
        )
