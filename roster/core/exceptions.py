"""Provisioning error taxonomy.

Every error raised by the sagas derives from ``RosterError`` and carries the
HTTP status the API layer should answer with plus a human-readable detail.
Store-level diagnostics (endpoint, status code from the backend) are logged by
the services and never copied into ``detail``.
"""
from __future__ import annotations
from typing import Optional


class RosterError(Exception):
    """Base error with HTTP status and user-facing detail."""

    status = 500

    def __init__(self, detail: str, status: Optional[int] = None):
        self.detail = detail
        if status is not None:
            self.status = status
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to the JSON error body returned by the API."""
        return {"error": self.detail}


class ValidationError(RosterError):
    """Missing or contradictory input; raised before any external call."""

    status = 400


class MalformedTokenError(RosterError):
    """Invite token could not be decoded."""

    status = 400


class NotFoundError(RosterError):
    """Referenced profile does not exist."""

    status = 404


class IdentityProviderError(RosterError):
    """Account store (auth admin API) failure."""

    status = 502


class StorageError(RosterError):
    """Profile store failure.

    Attributes:
        conflict: True when the store rejected the write on a uniqueness
            constraint (used by the badge re-allocation retry).
    """

    status = 502

    def __init__(self, detail: str, status: Optional[int] = None, conflict: bool = False):
        self.conflict = conflict
        super().__init__(detail, status)


class ObjectStoreError(RosterError):
    """Avatar upload failure. Always downgraded to "no avatar" by the sagas."""

    status = 502


class AllocationLookupError(RosterError):
    """Existing badge codes could not be fetched for allocation."""

    status = 502


class ReconciliationError(RosterError):
    """Counter recompute failed; counters stay stale until the next run."""

    status = 502


class _PartialFailure(RosterError):
    """Failure after at least one store was already mutated.

    The detail and status of the original cause are surfaced unchanged so the
    caller always sees the root error.
    """

    def __init__(self, cause: RosterError, stage: str):
        self.cause = cause
        self.stage = stage
        super().__init__(cause.detail, cause.status)


class PartialFailureCompensated(_PartialFailure):
    """Creation failed after the account existed; the account was rolled back.

    Attributes:
        compensation_failures: names of compensation steps that raised
            (logged, never surfaced as a separate error).
    """

    def __init__(self, cause: RosterError, stage: str, compensation_failures: Optional[list[str]] = None):
        self.compensation_failures = compensation_failures or []
        super().__init__(cause, stage)


class PartialFailureUncompensated(_PartialFailure):
    """Update failed after the account side committed; nothing was rolled back."""
