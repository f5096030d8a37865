# Overview: Allocation engine; orchestrates request creation and approval actions.

"""
Approval & Resource-Allocation Engine

================================================================================
PURPOSE: Move resource requests through their approval chain and reconcile
the outcome with finite resource capacity, atomically.
================================================================================

UNIT OF WORK:
Each create_request / act call is one transaction: the request row, the
approval records and the ledger counter are written together or not at
all. Notifications go out only after commit and may fail independently.

CALLER IDENTITY:
The caller is always passed in explicitly (Caller). Nothing in the engine
reads the Flask request context or any other ambient "current user".

RACE SAFETY:
- approval records move PENDING -> decided through a conditional UPDATE;
  zero rows affected means another approver won (StaleLevelError)
- the request row is version-checked on flush (StaleDataError), and the
  (request, level) uniqueness constraint rejects duplicate level records
  (IntegrityError); both surface as StaleLevelError
- the ledger commit is a conditional UPDATE bounded by quantity
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import NotFoundError, StaleLevelError, ValidationError
from ..extensions import db
from ..models import (
    ApprovalRecord,
    ApprovalStatus,
    ResourceRequest,
    ResourceTemplate,
    RequestStatus,
    Role,
    User,
    OPEN_STATUSES,
)
from ..provenance import Provenance, ResourceProvenance, TemplateProvenance, TypeProvenance
from ..validation import coerce_mapping, coerce_optional_int, coerce_positive_int, coerce_text
from infradesk.time_utils import utcnow
from . import authority_service, ledger_service, notification_service, project_access_service, request_state
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import Availability
from .notification_service import EventKind
from .request_state import Action, Transition


TRANSITION_EVENTS = {
    RequestStatus.REJECTED: EventKind.REJECTED,
    RequestStatus.IN_PROGRESS: EventKind.ADVANCED,
    RequestStatus.ASSIGNED_TO_IT: EventKind.ASSIGNED_TO_IT,
}


@dataclass(frozen=True)
class Caller:
    """Identity supplied by the auth layer; trusted as-is."""
    user_id: int
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        return cls(user_id=user.id, role=user.role)

    @property
    def approval_level(self) -> int:
        return authority_service.level_for(self.role)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def _configured_levels(provenance: Provenance, phase_id: int) -> int:
    """Approval depth from the catalog (templates) or the phase's pool (types)."""
    if isinstance(provenance, ResourceProvenance):
        return 0

    if isinstance(provenance, TemplateProvenance):
        template = db.session.get(ResourceTemplate, provenance.template_id)
        if template is None:
            raise NotFoundError(
                f"Resource template {provenance.template_id} not found",
                resource_template_id=provenance.template_id,
            )
        if not template.is_active:
            raise ValidationError(
                f"Resource template '{template.name}' is not active",
                resource_template_id=template.id,
            )
        return template.approval_levels

    if isinstance(provenance, TypeProvenance):
        return ledger_service.declared_resource(phase_id, provenance.resource_type).approval_levels

    raise TypeError(f"Unknown provenance {provenance!r}")


def _open_level(request: ResourceRequest, level: int) -> ApprovalRecord:
    """
    Create the PENDING record for `level`, pre-populated with the first
    eligible approver. No eligible approver is not an error: the record
    waits unassigned.
    """
    approver = authority_service.first_approver_for(level)
    if approver is None:
        current_app.logger.warning(
            "No eligible approver for level %s on request %s; record left unassigned",
            level, request.id,
        )
    record = ApprovalRecord(
        resource_request_id=request.id,
        approval_level=level,
        status=ApprovalStatus.PENDING,
        approver_id=approver.id if approver else None,
    )
    db.session.add(record)
    return record


def create_request(
    *,
    caller: Caller,
    phase_id: int,
    provenance: Provenance,
    qty,
    config=None,
    justification=None,
) -> ResourceRequest:
    """
    Create a resource request.

    - resource_id: capacity checked and committed to the ledger immediately;
      the request is created APPROVED.
    - resource_type: derived capacity checked; approval depth from the
      phase's declared pool.
    - resource_template_id: no capacity check, but the template must be
      linked to one of the phase's resources; approval depth from the
      template.
    A configured depth of 0 creates the request APPROVED for any provenance.

    Non-admin callers must be members of the phase's project.

    Raises ValidationError, NotFoundError, PermissionDeniedError,
    InsufficientCapacityError.
    """
    qty = coerce_positive_int("requested_qty", qty)
    config = coerce_mapping("requested_config", config)
    justification = coerce_text("justification", justification)

    def _op():
        project_access_service.require_phase_access(caller, phase_id)
        # Re-validated inside the transaction, against locked rows
        snapshot = ledger_service.availability(provenance, phase_id=phase_id, lock=True)
        ledger_service.require_capacity(snapshot, qty)

        configured = _configured_levels(provenance, phase_id)
        status = request_state.initial_status(provenance, configured)
        auto_approved = status == RequestStatus.APPROVED

        if auto_approved and isinstance(provenance, ResourceProvenance):
            ledger_service.commit(provenance.resource_id, qty)

        request = ResourceRequest(
            requester_id=caller.user_id,
            phase_id=phase_id,
            requested_config=config,
            requested_qty=qty,
            justification=justification,
            status=status,
            current_level=0,
            required_levels=0 if auto_approved else configured,
            approved_at=utcnow() if auto_approved else None,
            **provenance.to_columns(),
        )
        db.session.add(request)
        db.session.flush()

        if not auto_approved:
            _open_level(request, 1)
            db.session.flush()

        current_app.logger.info(
            "Request %s created by user %s: %s x%s (%s, %s levels)",
            request.id, caller.user_id, provenance.kind, qty, status.value, request.required_levels,
        )
        return request

    request = run_in_transaction(_op)
    notification_service.dispatch(EventKind.CREATED, request.id, actor_id=caller.user_id)
    return request


def _claim_level(
    request: ResourceRequest,
    transition: Transition,
    *,
    caller: Caller,
    comments: str | None,
) -> None:
    """
    Decide the approval record for transition.level.

    Transition on the existing PENDING record, or first-time creation of
    the level's record. Never a blind upsert.
    """
    values = request_state.record_decision(
        transition, actor_id=caller.user_id, comments=comments, now=utcnow()
    )
    record = lock_for_update(
        db.session.query(ApprovalRecord).filter_by(
            resource_request_id=request.id,
            approval_level=transition.level,
        )
    ).first()

    if record is None:
        db.session.add(
            ApprovalRecord(
                resource_request_id=request.id,
                approval_level=transition.level,
                **values,
            )
        )
        return

    if record.status != ApprovalStatus.PENDING:
        raise StaleLevelError(
            expected_level=transition.level,
            current_level=request.current_level,
            reason=f"This approval has already been {record.status.value.lower()}",
        )

    claimed = (
        db.session.query(ApprovalRecord)
        .filter(ApprovalRecord.id == record.id, ApprovalRecord.status == ApprovalStatus.PENDING)
        .update(values, synchronize_session=False)
    )
    if claimed != 1:
        raise StaleLevelError(expected_level=transition.level, current_level=request.current_level)
    db.session.refresh(record)


def _commit_capacity(request: ResourceRequest) -> None:
    """Final approval: consume the pool the request is bound to, if any."""
    provenance = request.provenance
    if isinstance(provenance, ResourceProvenance):
        ledger_service.commit(provenance.resource_id, request.requested_qty)
    elif isinstance(provenance, TypeProvenance):
        resource = ledger_service.declared_resource(request.phase_id, provenance.resource_type, lock=True)
        snapshot = ledger_service.type_availability(resource, exclude_request_id=request.id)
        ledger_service.require_capacity(snapshot, request.requested_qty)


def act(
    *,
    request_id: int,
    caller: Caller,
    action,
    comments=None,
    expected_level=None,
) -> ResourceRequest:
    """
    Approve or reject the next pending level of a request.

    `expected_level` is the level the caller believes it is acting on;
    when given and no longer current, the action fails with
    StaleLevelError instead of landing on a different level.

    Raises ValidationError, NotFoundError, CompletedWorkflowError,
    InsufficientLevelError, StaleLevelError, InsufficientCapacityError.
    """
    action = Action.parse(action)
    comments = coerce_text("comments", comments)
    expected_level = coerce_optional_int("level", expected_level)

    def _op():
        request = lock_for_update(db.session.query(ResourceRequest).filter_by(id=request_id)).first()
        if request is None:
            raise NotFoundError(f"Request {request_id} not found", request_id=request_id)

        transition = request_state.plan_transition(
            request,
            caller_level=caller.approval_level,
            action=action,
            expected_level=expected_level,
        )

        try:
            _claim_level(request, transition, caller=caller, comments=comments)
            request_state.apply_to_request(request, transition, comments=comments)
            if transition.open_level is not None:
                _open_level(request, transition.open_level)
            if transition.is_final_approval:
                _commit_capacity(request)
            db.session.flush()
        except (IntegrityError, StaleDataError) as exc:
            raise StaleLevelError(
                expected_level=transition.level,
                current_level=transition.level - 1,
                reason=f"Approval level {transition.level} was resolved concurrently by another approver",
            ) from exc

        current_app.logger.info(
            "Request %s: level %s %s by user %s -> %s",
            request.id, transition.level, transition.action.value, caller.user_id, transition.to_status.value,
        )
        return request, transition

    request, transition = run_in_transaction(_op)
    notification_service.dispatch(
        TRANSITION_EVENTS[transition.to_status],
        request.id,
        actor_id=caller.user_id,
        comments=comments,
    )
    return request


def availability(*, caller: Caller, phase_id, provenance: Provenance) -> Availability:
    """Read-only capacity report, including the allocations behind it."""
    phase_id = coerce_positive_int("phase_id", phase_id)
    project_access_service.require_phase_access(caller, phase_id)
    return ledger_service.availability(provenance, phase_id=phase_id, with_allocations=True)


def get_request(request_id: int) -> ResourceRequest:
    request = db.session.get(ResourceRequest, request_id)
    if request is None:
        raise NotFoundError(f"Request {request_id} not found", request_id=request_id)
    return request


def list_requests(caller: Caller, *, status: str | None = None, limit: int = 200) -> list[ResourceRequest]:
    """Caller's own requests; admins see every request."""
    q = db.session.query(ResourceRequest)
    if not caller.is_admin:
        q = q.filter(ResourceRequest.requester_id == caller.user_id)
    if status:
        try:
            q = q.filter(ResourceRequest.status == RequestStatus(status.upper()))
        except ValueError:
            raise ValidationError(f"Unknown status '{status}'", field="status")
    return q.order_by(ResourceRequest.created_at.desc(), ResourceRequest.id.desc()).limit(limit).all()


def pending_for(caller: Caller, *, limit: int = 200) -> list[ResourceRequest]:
    """Open requests whose next required level is exactly the caller's level."""
    level = caller.approval_level
    if level == 0:
        return []
    return (
        db.session.query(ResourceRequest)
        .filter(
            ResourceRequest.status.in_(OPEN_STATUSES),
            ResourceRequest.current_level == level - 1,
            ResourceRequest.required_levels >= level,
        )
        .order_by(ResourceRequest.created_at.asc(), ResourceRequest.id.asc())
        .limit(limit)
        .all()
    )
