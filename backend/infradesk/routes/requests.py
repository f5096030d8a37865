# backend/infradesk/routes/requests.py
"""
Resource request API routes.
"""
from flask import Blueprint, request, jsonify, g, current_app

from infradesk.decorators import require_auth
from infradesk.errors import AllocationError, NotFoundError
from infradesk.provenance import from_payload
from infradesk.services import allocation_service
from infradesk.services.allocation_service import Caller
from infradesk.validation import coerce_positive_int


requests_bp = Blueprint("requests", __name__, url_prefix="/api/requests")


@requests_bp.route("", methods=["POST"])
@require_auth
def create_request():
    """
    Create a resource request.

    Request body:
    {
        "phase_id": int,
        "resource_id" | "resource_template_id" | "resource_type": exactly one,
        "requested_qty": int (default 1),
        "requested_config": object (optional),
        "justification": str (optional)
    }

    Returns:
        201: Request created (PENDING, or APPROVED when no approval is needed)
        400: Invalid request
        404: Phase, resource, template or type not found
        409: Insufficient capacity
    """
    data = request.get_json(silent=True) or {}

    try:
        resource_request = allocation_service.create_request(
            caller=Caller.from_user(g.current_user),
            phase_id=coerce_positive_int("phase_id", data.get("phase_id")),
            provenance=from_payload(data),
            qty=data.get("requested_qty", 1),
            config=data.get("requested_config"),
            justification=data.get("justification"),
        )
        return jsonify(resource_request.to_dict()), 201

    except AllocationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create resource request")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.route("", methods=["GET"])
@require_auth
def list_requests():
    """Caller's requests (admins see all). Optional ?status= filter."""
    try:
        rows = allocation_service.list_requests(
            Caller.from_user(g.current_user),
            status=request.args.get("status"),
        )
        return jsonify({"requests": [r.to_dict() for r in rows]}), 200

    except AllocationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list resource requests")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.route("/<int:request_id>", methods=["GET"])
@require_auth
def get_request(request_id: int):
    """
    Snapshot with nested approval records.

    Visible to the requester, admins, and anyone with approval authority.
    """
    try:
        caller = Caller.from_user(g.current_user)
        resource_request = allocation_service.get_request(request_id)

        is_owner = resource_request.requester_id == caller.user_id
        if not (is_owner or caller.is_admin or caller.approval_level > 0):
            # Don't leak existence
            raise NotFoundError(f"Request {request_id} not found", request_id=request_id)

        return jsonify(resource_request.to_dict(include_credentials=is_owner or caller.is_admin)), 200

    except AllocationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load resource request %s", request_id)
        return jsonify({"error": "Internal server error"}), 500
