# backend/infradesk/routes/resources.py
"""
Resource availability API routes.
"""
from flask import Blueprint, g, request, jsonify, current_app

from infradesk.decorators import require_auth
from infradesk.errors import AllocationError
from infradesk.provenance import from_payload
from infradesk.services import allocation_service
from infradesk.services.allocation_service import Caller


resources_bp = Blueprint("resources", __name__, url_prefix="/api/resources")


@resources_bp.route("/availability", methods=["GET"])
@require_auth
def availability():
    """
    Capacity report for a pool in a phase.

    Query params:
        phase_id: int
        resource_id | resource_template_id | resource_type: exactly one

    Only admins and members of the phase's project may read it.
    Template-bound asks are not capacity-bounded; their report has
    enforced=false and no quantities.
    """
    try:
        snapshot = allocation_service.availability(
            caller=Caller.from_user(g.current_user),
            phase_id=request.args.get("phase_id"),
            provenance=from_payload(request.args),
        )
        return jsonify(snapshot.to_dict()), 200

    except AllocationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute availability")
        return jsonify({"error": "Internal server error"}), 500
