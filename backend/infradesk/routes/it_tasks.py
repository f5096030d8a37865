# backend/infradesk/routes/it_tasks.py
"""
IT provisioning task API routes.
"""
from flask import Blueprint, request, jsonify, g, current_app

from infradesk.decorators import require_auth, require_roles
from infradesk.errors import AllocationError
from infradesk.models import Role
from infradesk.services import it_task_service
from infradesk.services.allocation_service import Caller


it_tasks_bp = Blueprint("it_tasks", __name__, url_prefix="/api/it-tasks")


@it_tasks_bp.route("", methods=["GET"])
@require_auth
@require_roles(Role.IT_TEAM, Role.IT_HEAD, Role.ADMIN)
def list_tasks():
    """ASSIGNED_TO_IT and COMPLETED requests (IT team, IT head, admin)."""
    try:
        rows = it_task_service.list_it_tasks(Caller.from_user(g.current_user))
        return jsonify({"tasks": [r.to_dict(include_credentials=True) for r in rows]}), 200

    except AllocationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list IT tasks")
        return jsonify({"error": "Internal server error"}), 500


@it_tasks_bp.route("/mine", methods=["GET"])
@require_auth
def my_tasks():
    """Open tasks handed to the caller."""
    try:
        rows = it_task_service.list_assigned_to(Caller.from_user(g.current_user))
        return jsonify({"tasks": [r.to_dict() for r in rows]}), 200

    except Exception:
        current_app.logger.exception("Failed to list assigned tasks")
        return jsonify({"error": "Internal server error"}), 500


@it_tasks_bp.route("/<int:request_id>/assign", methods=["POST"])
@require_auth
def assign_task(request_id: int):
    """
    Request body:
    {
        "assigned_to_user_id": int
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        resource_request = it_task_service.assign_task(
            request_id=request_id,
            caller=Caller.from_user(g.current_user),
            assignee_id=data.get("assigned_to_user_id"),
        )
        return jsonify(resource_request.to_dict()), 200

    except AllocationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to assign IT task %s", request_id)
        return jsonify({"error": "Internal server error"}), 500


@it_tasks_bp.route("/<int:request_id>/complete", methods=["POST"])
@require_auth
def complete_task(request_id: int):
    """
    Request body:
    {
        "completion_notes": str (optional),
        "credentials": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        resource_request = it_task_service.complete_task(
            request_id=request_id,
            caller=Caller.from_user(g.current_user),
            completion_notes=data.get("completion_notes"),
            credentials=data.get("credentials"),
        )
        return jsonify(resource_request.to_dict(include_credentials=True)), 200

    except AllocationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete IT task %s", request_id)
        return jsonify({"error": "Internal server error"}), 500
