"""
Identifier generation for stored entities.

All IDs use format: {PREFIX}-YYYYMMDD-HHMMSS-XXXXXXXXXXXXXXXX
- PREFIX: short entity tag (T for tasks, PL for pipelines, PS for pipeline state)
- Timestamp: UTC, keeps directory listings roughly in creation order
- Suffix: 16 hex characters from the secrets module (64 random bits)

There is no central sequence authority, so uniqueness rests on the random
suffix alone.

Examples:
    >>> generate_entity_id("T")
    'T-20261017-143052-a1b2c3d4e5f60718'

    >>> generate_event_id()
    'EV-20261017-143052-9f8e7d6c'
"""

import re
import secrets
from datetime import datetime, timezone


_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]*$')


def generate_entity_id(prefix: str) -> str:
    """
    Generate a unique entity ID.

    Args:
        prefix: Entity tag placed in front of the timestamp

    Returns:
        ID string (e.g., 'T-20261017-143052-a1b2c3d4e5f60718')
    """
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y%m%d-%H%M%S")
    suffix = secrets.token_hex(8)  # 16 hex chars
    return f"{prefix}-{timestamp}-{suffix}"


def generate_event_id() -> str:
    """
    Generate an audit event ID.

    Event IDs only need to be unique within one entity's audit list,
    so the suffix is shorter than for entities.
    """
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y%m%d-%H%M%S")
    suffix = secrets.token_hex(4)  # 8 hex chars
    return f"EV-{timestamp}-{suffix}"


def generate_short_id(prefix: str = "") -> str:
    """
    Generate a short random ID for embedded items (comments, links).

    Args:
        prefix: Optional prefix, joined with a dash

    Returns:
        e.g. 'C-1a2b3c4d' or '1a2b3c4d'
    """
    suffix = secrets.token_hex(4)
    return f"{prefix}-{suffix}" if prefix else suffix


def is_valid_id(entity_id: str) -> bool:
    """
    Check that an ID can safely name a file inside the store.

    Rejects empty strings, path separators and leading dots so a caller
    cannot address files outside the entities directory.
    """
    return isinstance(entity_id, str) and bool(_ID_PATTERN.match(entity_id))
