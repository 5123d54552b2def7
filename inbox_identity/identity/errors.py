"""
Merge error taxonomy.

Callers must be able to tell "nothing happened" from "partially happened",
so every merge failure surfaces as one of these kinds and never as a bare
storage exception. NotFound and Conflict mean the duplicate snapshot is
stale: re-run duplicate discovery instead of retrying the same merge.
"""

from __future__ import annotations

from typing import Any

from inbox_identity.kernel.errors import (
    ConflictError,
    IdentityError,
    NotFoundError,
    ValidationError,
)


class MergeError(IdentityError):
    """Base for failures raised by the merge executor."""

    rediscover: bool = False

    def __init__(self, *, code: str, message: str, status_code: int, meta: dict[str, Any] | None = None):
        meta = dict(meta or {})
        meta.setdefault("rediscover", self.rediscover)
        IdentityError.__init__(self, code=code, message=message, status_code=status_code, meta=meta)


class InvalidMergeError(MergeError):
    def __init__(self, *, message: str = "Cannot merge a contact with itself", meta: dict[str, Any] | None = None):
        super().__init__(code="merge.invalid", message=message, status_code=400, meta=meta)


class MergeNotFoundError(MergeError, NotFoundError):
    rediscover = True

    def __init__(self, *, message: str = "Contact not found", meta: dict[str, Any] | None = None):
        super().__init__(code="merge.not_found", message=message, status_code=404, meta=meta)


class MergeConflictError(MergeError, ConflictError):
    rediscover = True

    def __init__(
        self,
        *,
        message: str = "Contact was merged or deleted by a concurrent request",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code="merge.conflict", message=message, status_code=409, meta=meta)


class MigrationFailureError(MergeError):
    def __init__(self, *, message: str = "Relationship migration failed", meta: dict[str, Any] | None = None):
        super().__init__(code="merge.migration_failed", message=message, status_code=500, meta=meta)


class MergeTimeoutError(MergeError):
    def __init__(self, *, message: str = "Merge transaction timed out", meta: dict[str, Any] | None = None):
        super().__init__(code="merge.timeout", message=message, status_code=504, meta=meta)


__all__ = [
    "ConflictError",
    "IdentityError",
    "InvalidMergeError",
    "MergeConflictError",
    "MergeError",
    "MergeNotFoundError",
    "MergeTimeoutError",
    "MigrationFailureError",
    "NotFoundError",
    "ValidationError",
]
