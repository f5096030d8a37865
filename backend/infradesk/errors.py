# Overview: Typed errors raised by the approval and allocation engine.

"""
Allocation engine error taxonomy.

Every error carries a machine-readable code, the HTTP status routes should
answer with, and a details dict with enough context (levels, quantities)
for a client to render an actionable message without re-querying.
"""

from __future__ import annotations

from typing import Any


class AllocationError(Exception):
    """Base class for all engine errors."""

    code = "allocation_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class ValidationError(AllocationError, ValueError):
    """400-level input problem (malformed provenance, non-positive qty)."""

    code = "validation_error"
    status_code = 400


class NotFoundError(AllocationError):
    """Unknown request, resource, phase or template."""

    code = "not_found"
    status_code = 404


class InsufficientCapacityError(AllocationError):
    """Requested quantity exceeds what the resource pool has left."""

    code = "insufficient_capacity"
    status_code = 409

    def __init__(self, *, available: int, total: int, consumed: int, requested: int):
        super().__init__(
            f"Insufficient resources available. Only {available} units available "
            f"({total} total, {consumed} already allocated), {requested} requested",
            available=available,
            total=total,
            consumed=consumed,
            requested=requested,
        )


class InsufficientLevelError(AllocationError):
    """Caller's approval level does not match the next required level."""

    code = "insufficient_level"
    status_code = 403

    def __init__(self, *, caller_level: int, required_level: int):
        if caller_level == 0:
            message = "You do not have approval permissions"
        else:
            message = (
                f"This request requires level {required_level} approval. "
                f"Your approval level is {caller_level}"
            )
        super().__init__(message, caller_level=caller_level, required_level=required_level)


class StaleLevelError(AllocationError):
    """The level the caller acted on was already resolved by someone else."""

    code = "stale_level"
    status_code = 409

    def __init__(self, *, expected_level: int | None, current_level: int, reason: str | None = None):
        message = reason or (
            f"Approval level {expected_level} is no longer pending "
            f"(request is at level {current_level})"
        )
        super().__init__(message, expected_level=expected_level, current_level=current_level)


class CompletedWorkflowError(AllocationError):
    """No further approval action is possible on this request."""

    code = "workflow_completed"
    status_code = 409

    def __init__(self, *, status: str, current_level: int, required_levels: int):
        super().__init__(
            f"Request is {status}; no further approval action is possible",
            status=status,
            current_level=current_level,
            required_levels=required_levels,
        )


class InternalError(AllocationError):
    """Storage or transaction failure."""

    code = "internal_error"
    status_code = 500


class PermissionDeniedError(AllocationError):
    """Caller's role may not perform this operation."""

    code = "permission_denied"
    status_code = 403
