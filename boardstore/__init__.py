"""
boardstore - Durable file-based entity storage for a task board.

Each entity lives in its own JSON file, written atomically. A disposable
summary index makes listing fast and rebuilds itself from the records when
it is missing or stale. Tracked field changes are appended to an audit trail
embedded in the record they describe.

Key components:
- EntityStore: create/get/list/update/remove with atomic writes and locking
- RecordCodec: checksummed, deterministic record encoding
- IndexManager: the rebuildable summary index
- AuditLogger: audit event derivation and queries
- RecoveryManager: temp file cleanup, integrity checks, index repair
- TaskStore / PipelineStore / PipelineStateStore: the board's entity types
- BoardStorage: the three stores under one directory
"""

from .errors import (
    StoreError,
    NotFoundError,
    DecodeError,
    StorageError,
    ValidationError,
    ConflictError,
)

from .config import (
    DurabilityMode,
    IndexStrategy,
    StoreConfig,
)

from .types import (
    AuditEventKind,
    AuditEvent,
    AuditMetadata,
    CreationMetadata,
    TransitionMetadata,
    LinkMetadata,
    CommentMetadata,
    Entity,
    IndexEntry,
)

from .schema import (
    BaseSchema,
    Field,
    FieldType,
    ValidationResult,
)

from .codec import RecordCodec
from .indexer import IndexManager, IndexStats
from .audit import AuditLogger
from .store import EntityStore, ScanResult
from .recovery import RecoveryManager, RecoveryResult

from .tasks import (
    TaskSchema,
    TaskStore,
    STATUSES,
    LINK_TYPES,
)

from .pipelines import (
    PipelineSchema,
    PipelineStateSchema,
    PipelineStore,
    PipelineStateStore,
    PIPELINE_TEMPLATES,
)

from .board import BoardStorage

__version__ = "0.1.0"

__all__ = [
    # Errors
    'StoreError',
    'NotFoundError',
    'DecodeError',
    'StorageError',
    'ValidationError',
    'ConflictError',
    # Config
    'DurabilityMode',
    'IndexStrategy',
    'StoreConfig',
    # Types
    'AuditEventKind',
    'AuditEvent',
    'AuditMetadata',
    'CreationMetadata',
    'TransitionMetadata',
    'LinkMetadata',
    'CommentMetadata',
    'Entity',
    'IndexEntry',
    # Schema
    'BaseSchema',
    'Field',
    'FieldType',
    'ValidationResult',
    # Engine
    'RecordCodec',
    'IndexManager',
    'IndexStats',
    'AuditLogger',
    'EntityStore',
    'ScanResult',
    'RecoveryManager',
    'RecoveryResult',
    # Board
    'TaskSchema',
    'TaskStore',
    'STATUSES',
    'LINK_TYPES',
    'PipelineSchema',
    'PipelineStateSchema',
    'PipelineStore',
    'PipelineStateStore',
    'PIPELINE_TEMPLATES',
    'BoardStorage',
]
