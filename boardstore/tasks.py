"""
Task board entities.

Tasks are the cards of the board. Status, assignee and priority changes are
tracked in the audit trail; comments and links are appended through their
own operations so each gets its own event.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import StoreConfig
from .errors import ValidationError
from .schema import BaseSchema, Field, FieldType
from .store import EntityStore
from .types import AuditEventKind, Entity, IndexEntry

logger = logging.getLogger(__name__)

# Board columns, in display order
STATUSES = ['backlog', 'in-progress', 'review', 'done']

LINK_TYPES = ['pr', 'attachment', 'reference']

DEFAULT_PRIORITY = 100


def _not_blank(value: str) -> bool:
    return bool(value.strip())


class TaskSchema(BaseSchema):
    """Schema for task records."""

    schema_version = 1
    entity_type = 'task'
    id_prefix = 'T'

    fields = {
        'title': Field('title', FieldType.STRING, required=True, validator=_not_blank),
        'description': Field('description', FieldType.STRING, required=False, default=''),
        'status': Field('status', FieldType.ENUM, required=True, default='backlog', choices=STATUSES),
        'priority': Field('priority', FieldType.INTEGER, required=True, default=DEFAULT_PRIORITY),
        # also the persona working the task
        'assignee': Field('assignee', FieldType.STRING, required=False),
        'tags': Field('tags', FieldType.LIST, required=False, default=[], item_type=FieldType.STRING),
        'due_date': Field('due_date', FieldType.DATETIME, required=False),
        'estimate': Field('estimate', FieldType.STRING, required=False, validator=_not_blank,
                          description='Free-form effort estimate, e.g. "2h" or "3d"'),
        'comments': Field('comments', FieldType.LIST, required=False, default=[], item_type=FieldType.DICT),
        'links': Field('links', FieldType.LIST, required=False, default=[], item_type=FieldType.DICT),
    }

    title_field = 'title'
    status_field = 'status'
    priority_field = 'priority'
    assignee_field = 'assignee'
    tags_field = 'tags'
    links_field = 'links'
    comments_field = 'comments'

    tracked_fields = {
        'status': AuditEventKind.STATUS_CHANGE,
        'assignee': AuditEventKind.ASSIGNMENT_CHANGE,
        'priority': AuditEventKind.PRIORITY_CHANGE,
    }

    @classmethod
    def summarize(cls, entity: Entity) -> Dict[str, Any]:
        return {
            'comment_count': len(entity.get('comments') or []),
            'link_count': len(entity.get('links') or []),
        }


class TaskStore(EntityStore):
    """
    Entity store for tasks.

    Example:
        >>> tasks = TaskStore(Path("~/.board/tasks").expanduser())
        >>> task = tasks.create({"title": "Fix login", "priority": 10})
        >>> tasks.add_comment(task.id, "Reproduced on staging", author="alice")
        >>> [entry.id for entry in tasks.board_summary()["backlog"]]
        ['T-20250101-120000-...']
    """

    def __init__(self, root_dir: Path, config: Optional[StoreConfig] = None):
        super().__init__(root_dir, TaskSchema, config)

    def add_link(
        self,
        entity_id: str,
        url: str,
        title: str = "",
        link_type: str = "reference",
        actor: Optional[str] = None,
    ) -> Optional[Entity]:
        """
        Attach a link (pr, attachment or reference) to a task.

        Raises:
            ValidationError: If link_type is not a known link type
        """
        if link_type not in LINK_TYPES:
            raise ValidationError(
                f"Link type must be one of {LINK_TYPES}, got '{link_type}'",
                link_type=link_type,
            )
        return super().add_link(entity_id, url, title=title, link_type=link_type, actor=actor)

    def board_summary(self) -> Dict[str, List[IndexEntry]]:
        """
        Index entries grouped by board column.

        Every column is present, even when empty. Entries with a status
        outside the known columns are left out.
        """
        board: Dict[str, List[IndexEntry]] = {status: [] for status in STATUSES}
        for entry in self.summaries():
            if entry.status in board:
                board[entry.status].append(entry)
            else:
                logger.debug(f"Task {entry.id} has unknown status {entry.status!r}")
        return board
