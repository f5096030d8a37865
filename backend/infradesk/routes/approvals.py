# backend/infradesk/routes/approvals.py
"""
Approval API routes.

A caller may act only at exactly the next pending level of a request, as
resolved from their role (DEPARTMENT_HEAD 1, IT_HEAD 2, ADMIN 3).
"""
from flask import Blueprint, request, jsonify, g, current_app

from infradesk.decorators import require_auth
from infradesk.errors import AllocationError
from infradesk.services import allocation_service
from infradesk.services.allocation_service import Caller
from infradesk.validation import coerce_positive_int


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


@approvals_bp.route("", methods=["POST"])
@require_auth
def act_on_request():
    """
    Approve or reject the next pending level of a request.

    Request body:
    {
        "request_id": int,
        "action": "approve" | "reject",
        "comments": str (optional; stored as the rejection reason on reject),
        "level": int (optional; the level the client believes is pending)
    }

    Returns:
        200: Updated request
        400: Invalid request
        403: Caller's approval level is not the next required level
        404: Request not found
        409: Level already resolved, workflow completed, or insufficient capacity
    """
    data = request.get_json(silent=True) or {}

    try:
        resource_request = allocation_service.act(
            request_id=coerce_positive_int("request_id", data.get("request_id")),
            caller=Caller.from_user(g.current_user),
            action=data.get("action"),
            comments=data.get("comments"),
            expected_level=data.get("level"),
        )
        return jsonify(resource_request.to_dict()), 200

    except AllocationError as e:
        if e.status_code == 403:
            current_app.logger.warning(
                "User %s denied approval on request %s: %s", g.current_user.id, data.get("request_id"), e.message
            )
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process approval")
        return jsonify({"error": "Internal server error"}), 500


@approvals_bp.route("/pending", methods=["GET"])
@require_auth
def pending_approvals():
    """Requests whose next required level equals the caller's approval level."""
    try:
        caller = Caller.from_user(g.current_user)
        rows = allocation_service.pending_for(caller)
        return jsonify({
            "approval_level": caller.approval_level,
            "requests": [r.to_dict() for r in rows],
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list pending approvals")
        return jsonify({"error": "Internal server error"}), 500
