"""
Exception classes for the entity store.

All exceptions are designed to be text-friendly for JSON error messages:
the HTTP layer in front of the store can return ``error.to_dict()`` as is.
"""

from typing import Any, Dict


class StoreError(Exception):
    """Base exception for all store errors."""

    def __init__(self, message: str, **context):
        """
        Initialize store error with message and optional context.

        Args:
            message: Human-readable error message
            **context: Entity ID, path and similar details (JSON-serializable)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Error as a JSON-ready dict (error_type, message, context)."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "context": dict(self.context),
        }


class NotFoundError(StoreError):
    """Entity not found (only raised by lookups that require a record)."""
    pass


class DecodeError(StoreError):
    """Record bytes are malformed (bad JSON, missing fields, checksum mismatch)."""
    pass


class StorageError(StoreError):
    """The filesystem refused an operation, or a lock deadline passed."""

    @property
    def retryable(self) -> bool:
        """True when retrying the same call may succeed (e.g. lock timeout)."""
        return bool(self.context.get("retryable", False))


class ValidationError(StoreError):
    """Invalid data (missing required fields, invalid enum values, etc.)."""
    pass


class ConflictError(StoreError):
    """Optimistic locking conflict (version changed under a concurrent update)."""
    pass
