"""
Store configuration module.

Provides configuration options for the entity store, including durability
modes that control fsync behavior and the index maintenance strategy.

Example:
    from boardstore import EntityStore, StoreConfig, DurabilityMode

    config = StoreConfig(durability=DurabilityMode.PARANOID, lock_timeout=2.0)
    store = EntityStore(Path("~/.boardstore/tasks").expanduser(), TaskSchema, config)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DurabilityMode(Enum):
    """
    Durability mode controls when data is synced to disk.

    PARANOID: fsync record files and their directory on every write
        - Guarantees a completed write survives power loss
        - Index writes are fsynced too

    BALANCED: fsync record files before the rename (recommended)
        - Committed records survive power loss
        - Index writes are not fsynced (the index is rebuildable)

    RELAXED: no fsync, rely on OS buffer cache
        - Data survives a process crash (it is in the kernel buffer)
        - Power loss within the OS flush window may lose recent writes
    """

    PARANOID = "paranoid"
    BALANCED = "balanced"
    RELAXED = "relaxed"


class IndexStrategy(Enum):
    """
    How the summary index is refreshed after update/remove.

    REBUILD: rescan every record and rewrite the whole index (O(n) per write)
    INCREMENTAL: replace or drop the single affected entry in place
    """

    REBUILD = "rebuild"
    INCREMENTAL = "incremental"


@dataclass
class StoreConfig:
    """
    Configuration for an entity store.

    Attributes:
        durability: Durability mode (default: BALANCED)
        index_strategy: Index refresh strategy after mutations (default: REBUILD)
        lock_timeout: Seconds to wait for a per-entity lock before giving up
            with a retryable StorageError. None waits forever.
        process_locking: Also take a file lock per entity so separate
            processes sharing a root directory serialise their mutations
        default_actor: Actor recorded on audit events when the caller gives none
    """

    durability: DurabilityMode = DurabilityMode.BALANCED
    index_strategy: IndexStrategy = IndexStrategy.REBUILD
    lock_timeout: Optional[float] = 10.0
    process_locking: bool = False
    default_actor: str = "system"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """Validate all configuration parameters."""
        if not isinstance(self.durability, DurabilityMode):
            raise ValueError(
                f"durability must be a DurabilityMode, got {self.durability!r}"
            )
        if not isinstance(self.index_strategy, IndexStrategy):
            raise ValueError(
                f"index_strategy must be an IndexStrategy, got {self.index_strategy!r}"
            )
        if self.lock_timeout is not None and self.lock_timeout <= 0:
            raise ValueError(
                f"lock_timeout must be positive or None, got {self.lock_timeout}"
            )
        if not self.default_actor:
            raise ValueError("default_actor must be a non-empty string")

    @property
    def fsync_records(self) -> bool:
        return self.durability != DurabilityMode.RELAXED

    @property
    def fsync_index(self) -> bool:
        return self.durability == DurabilityMode.PARANOID

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert configuration to dictionary.

        Returns:
            Dictionary representation of the configuration
        """
        return {
            'durability': self.durability.value,
            'index_strategy': self.index_strategy.value,
            'lock_timeout': self.lock_timeout,
            'process_locking': self.process_locking,
            'default_actor': self.default_actor,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StoreConfig':
        """
        Create configuration from dictionary.

        Unknown keys are ignored so older config files keep loading.

        Args:
            data: Dictionary with configuration values

        Returns:
            New StoreConfig instance
        """
        kwargs: Dict[str, Any] = {}
        if 'durability' in data:
            kwargs['durability'] = DurabilityMode(data['durability'])
        if 'index_strategy' in data:
            kwargs['index_strategy'] = IndexStrategy(data['index_strategy'])
        for key in ('lock_timeout', 'process_locking', 'default_actor'):
            if key in data:
                kwargs[key] = data[key]
        return cls(**kwargs)
