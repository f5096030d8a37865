# Overview: Request lifecycle state machine; decides transitions, never touches the DB.

"""
Resource Request State Machine

================================================================================
STATES
================================================================================

    PENDING         no level approved yet, required_levels > 0
    IN_PROGRESS     1+ levels approved, not all
    APPROVED        auto-approved at creation (0 levels, or bound to a
                    specific pre-provisioned resource)
    ASSIGNED_TO_IT  final level cleared, handed to provisioning
    REJECTED        terminal failure at any level
    COMPLETED       provisioning finished (entered from ASSIGNED_TO_IT only,
                    by the IT task flow)

================================================================================
TRANSITIONS for an action at level L on a request with current_level = L-1
================================================================================

    reject                      -> REJECTED, rejection_reason stored,
                                   no further level records
    approve, L == required      -> ASSIGNED_TO_IT, current_level = L
                                   (ledger commit for resource-bound requests)
    approve, L <  required      -> IN_PROGRESS, current_level = L,
                                   open the level L+1 record

GUARDS (checked in this order):
1. expected level given and != current_level + 1   -> StaleLevelError
2. request not in PENDING / IN_PROGRESS            -> CompletedWorkflowError
3. caller's level != current_level + 1             -> InsufficientLevelError

A user may act only at exactly the next pending level, never ahead or
behind.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from ..errors import (
    CompletedWorkflowError,
    InsufficientLevelError,
    StaleLevelError,
    ValidationError,
)
from ..models import ApprovalStatus, RequestStatus, ResourceRequest, OPEN_STATUSES
from ..provenance import Provenance, ResourceProvenance


class Action(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @classmethod
    def parse(cls, value) -> "Action":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError("Action must be approve or reject", field="action")


@dataclass(frozen=True)
class Transition:
    level: int
    action: Action
    to_status: RequestStatus
    to_level: int
    # Level whose record must be opened next (None when nothing follows)
    open_level: int | None = None

    @property
    def is_final_approval(self) -> bool:
        return self.to_status == RequestStatus.ASSIGNED_TO_IT


def is_auto_approved(provenance: Provenance, required_levels: int) -> bool:
    """
    Requests with no configured approval depth, and requests bound to a
    specific pre-provisioned resource (project-internal allocation), skip
    the approval chain. The rule is the same for every provenance.
    """
    return required_levels == 0 or isinstance(provenance, ResourceProvenance)


def initial_status(provenance: Provenance, required_levels: int) -> RequestStatus:
    if is_auto_approved(provenance, required_levels):
        return RequestStatus.APPROVED
    return RequestStatus.PENDING


def ensure_actionable(request: ResourceRequest) -> None:
    if request.status not in OPEN_STATUSES or request.current_level >= request.required_levels:
        raise CompletedWorkflowError(
            status=request.status.value,
            current_level=request.current_level,
            required_levels=request.required_levels,
        )


def plan_transition(
    request: ResourceRequest,
    *,
    caller_level: int,
    action: Action,
    expected_level: int | None = None,
) -> Transition:
    """Decide the transition for `action` by a caller at `caller_level`."""
    next_level = request.next_required_level

    if expected_level is not None and expected_level != next_level:
        raise StaleLevelError(expected_level=expected_level, current_level=request.current_level)

    ensure_actionable(request)

    if caller_level != next_level:
        raise InsufficientLevelError(caller_level=caller_level, required_level=next_level)

    if action is Action.REJECT:
        return Transition(
            level=next_level,
            action=action,
            to_status=RequestStatus.REJECTED,
            to_level=request.current_level,
        )

    if next_level == request.required_levels:
        return Transition(
            level=next_level,
            action=action,
            to_status=RequestStatus.ASSIGNED_TO_IT,
            to_level=next_level,
        )

    return Transition(
        level=next_level,
        action=action,
        to_status=RequestStatus.IN_PROGRESS,
        to_level=next_level,
        open_level=next_level + 1,
    )


def record_decision(
    transition: Transition,
    *,
    actor_id: int,
    comments: str | None,
    now: datetime,
) -> dict:
    """Column values for the acted-on approval record."""
    approved = transition.action is Action.APPROVE
    return {
        "status": ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED,
        "approver_id": actor_id,
        "comments": comments,
        "approved_at": now if approved else None,
    }


def apply_to_request(request: ResourceRequest, transition: Transition, *, comments: str | None) -> None:
    request.status = transition.to_status
    request.current_level = transition.to_level
    if transition.to_status == RequestStatus.REJECTED:
        request.rejection_reason = comments
