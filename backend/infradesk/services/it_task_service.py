# Overview: IT provisioning hand-off for fully approved requests.

"""
IT Tasks

A request enters ASSIGNED_TO_IT when its final approval level clears.
From there IT staff hand it to a department member and the work is
closed out as COMPLETED with notes and (optionally) credentials.

    ASSIGNED_TO_IT --assign--> ASSIGNED_TO_IT (assignee set)
    ASSIGNED_TO_IT --complete--> COMPLETED

Assignment and completion are only possible from ASSIGNED_TO_IT.
"""

from __future__ import annotations

from flask import current_app

from ..errors import NotFoundError, PermissionDeniedError, ValidationError
from ..extensions import db
from ..models import ResourceRequest, RequestStatus, Role, User
from ..validation import coerce_positive_int, coerce_text
from infradesk.time_utils import utcnow
from . import notification_service
from .concurrency import lock_for_update, run_in_transaction
from .notification_service import EventKind


IT_ROLES = frozenset({Role.IT_TEAM, Role.IT_HEAD, Role.ADMIN})
ASSIGNER_ROLES = IT_ROLES
COMPLETER_ROLES = frozenset({Role.IT_TEAM, Role.ADMIN})


def _require_role(caller, roles, message: str) -> None:
    if caller.role not in roles:
        current_app.logger.warning("User %s (%s) denied: %s", caller.user_id, caller.role.value, message)
        raise PermissionDeniedError(message, role=caller.role.value)


def _locked_task(request_id: int) -> ResourceRequest:
    request = lock_for_update(db.session.query(ResourceRequest).filter_by(id=request_id)).first()
    if request is None:
        raise NotFoundError(f"Request {request_id} not found", request_id=request_id)
    if request.status != RequestStatus.ASSIGNED_TO_IT:
        raise ValidationError(
            f"Request must be in {RequestStatus.ASSIGNED_TO_IT.value} status",
            request_id=request.id,
            status=request.status.value,
        )
    return request


def list_it_tasks(caller) -> list[ResourceRequest]:
    """Open and completed IT work, open first, newest first within each."""
    _require_role(caller, IT_ROLES, "IT team access required")
    return (
        db.session.query(ResourceRequest)
        .filter(ResourceRequest.status.in_([RequestStatus.ASSIGNED_TO_IT, RequestStatus.COMPLETED]))
        .order_by(ResourceRequest.status.asc(), ResourceRequest.created_at.desc(), ResourceRequest.id.desc())
        .all()
    )


def list_assigned_to(caller) -> list[ResourceRequest]:
    return (
        db.session.query(ResourceRequest)
        .filter(
            ResourceRequest.assigned_to_user_id == caller.user_id,
            ResourceRequest.status == RequestStatus.ASSIGNED_TO_IT,
        )
        .order_by(ResourceRequest.assigned_at.desc(), ResourceRequest.id.desc())
        .all()
    )


def assign_task(*, request_id: int, caller, assignee_id) -> ResourceRequest:
    """
    Hand an ASSIGNED_TO_IT request to a department member.

    The assignee must be an active user with a department and must not be
    IT staff or an admin.
    """
    _require_role(caller, ASSIGNER_ROLES, "IT team access required")
    assignee_id = coerce_positive_int("assigned_to_user_id", assignee_id)

    def _op():
        request = _locked_task(request_id)

        assignee = db.session.get(User, assignee_id)
        if assignee is None or not assignee.is_active:
            raise NotFoundError("Assigned user not found", assigned_to_user_id=assignee_id)
        if not assignee.department:
            raise ValidationError("Can only assign tasks to department members", assigned_to_user_id=assignee_id)
        if assignee.role in IT_ROLES:
            raise ValidationError("Cannot assign tasks to IT team members", assigned_to_user_id=assignee_id)

        request.assigned_to_user_id = assignee.id
        request.assigned_at = utcnow()
        db.session.flush()

        current_app.logger.info(
            "Request %s assigned to user %s by user %s", request.id, assignee.id, caller.user_id
        )
        return request

    return run_in_transaction(_op)


def complete_task(*, request_id: int, caller, completion_notes=None, credentials=None) -> ResourceRequest:
    """
    Close out provisioning: ASSIGNED_TO_IT -> COMPLETED.

    Allowed for IT team members, admins, and the department member the
    task was assigned to. The requester is notified after commit.
    """
    completion_notes = coerce_text("completion_notes", completion_notes)
    credentials = coerce_text("credentials", credentials)

    def _op():
        request = _locked_task(request_id)

        is_assignee = request.assigned_to_user_id is not None and request.assigned_to_user_id == caller.user_id
        if not is_assignee:
            _require_role(caller, COMPLETER_ROLES, "This task is not assigned to you")

        request.status = RequestStatus.COMPLETED
        request.completed_by_id = caller.user_id
        request.completed_at = utcnow()
        request.completion_notes = completion_notes
        request.credentials = credentials
        db.session.flush()

        current_app.logger.info("Request %s completed by user %s", request.id, caller.user_id)
        return request

    request = run_in_transaction(_op)
    notification_service.dispatch(EventKind.COMPLETED, request.id, actor_id=caller.user_id)
    return request
