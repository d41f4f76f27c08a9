"""
Error taxonomy for refill runs.

Selection failures abort a run; update and audit failures are per key.
"""

from typing import Optional


class RefillError(Exception):
    """Base error carrying the failed operation and, when known, the key."""

    def __init__(self, message: str, operation: str, key_id: Optional[str] = None):
        self.operation = operation
        self.key_id = key_id
        self.reason = message
        if key_id is not None:
            message = f"{operation} failed for key {key_id}: {message}"
        else:
            message = f"{operation} failed: {message}"
        super().__init__(message)


class StoreQueryError(RefillError):
    """Raised when the due-key query cannot be executed."""


class UpdateError(RefillError):
    """Raised when a single key's refill write fails."""


class AuditIngestError(RefillError):
    """Raised when an audit event is rejected or cannot be delivered."""
