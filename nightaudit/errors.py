# nightaudit/errors.py
"""
Failure taxonomy for the daily close engine.

Every error carries a human-readable message and a machine-checkable `kind`
so the HTTP layer (and any other caller) can tell a true double-close apart
from a transient failure that is safe to retry.
"""
from __future__ import annotations

from typing import Optional


class DailyCloseError(Exception):
    kind = "error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class ValidationError(DailyCloseError):
    """Malformed input, rejected before any side effect."""

    kind = "validation"


class NotFoundError(DailyCloseError):
    kind = "not_found"


class ConflictError(DailyCloseError):
    """The date is already closed, or a close for it is in flight."""

    kind = "conflict"

    ALREADY_CLOSED = "already_closed"
    IN_PROGRESS = "in_progress"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class TransientError(DailyCloseError):
    """Upstream timeout or connectivity failure. Safe to retry."""

    kind = "transient"
    retryable = True

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source
