"""
Utility modules for boardstore.

Provides shared utilities for:
- Locking (KeyedLocks, ProcessLock)
- ID generation (generate_entity_id, generate_event_id)
- Atomic file persistence (atomic_write_bytes, iter_temp_files)
- Checksum computation and verification (compute_checksum, verify_checksum)
"""

from .locking import KeyedLocks, LockTimeout, ProcessLock
from .id_generation import (
    generate_entity_id,
    generate_event_id,
    generate_short_id,
    is_valid_id,
)
from .persistence import atomic_write_bytes, iter_temp_files
from .checksums import compute_checksum, verify_checksum

__all__ = [
    'KeyedLocks',
    'LockTimeout',
    'ProcessLock',
    'generate_entity_id',
    'generate_event_id',
    'generate_short_id',
    'is_valid_id',
    'atomic_write_bytes',
    'iter_temp_files',
    'compute_checksum',
    'verify_checksum',
]
