# Overview: Service-layer operations for project membership and phase access checks.

from __future__ import annotations

from ..errors import NotFoundError, PermissionDeniedError
from ..extensions import db
from ..models import Phase, Project, ProjectMember, User


def is_member(user_id: int, project_id: int) -> bool:
    return (
        db.session.query(ProjectMember.id)
        .filter_by(user_id=user_id, project_id=project_id)
        .first()
        is not None
    )


def require_phase_access(caller, phase_id: int) -> Phase:
    """
    Load the phase and check the caller may work in its project.

    Admins see every project; everyone else must be a member.
    Raises NotFoundError for an unknown phase, PermissionDeniedError
    otherwise.
    """
    phase = db.session.get(Phase, phase_id)
    if phase is None:
        raise NotFoundError(f"Phase {phase_id} not found", phase_id=phase_id)

    if not caller.is_admin and not is_member(caller.user_id, phase.project_id):
        raise PermissionDeniedError(
            "You do not have access to this project",
            project_id=phase.project_id,
            phase_id=phase.id,
        )
    return phase


def list_members(project_id: int) -> list[ProjectMember]:
    return (
        db.session.query(ProjectMember)
        .filter_by(project_id=project_id)
        .order_by(ProjectMember.user_id.asc())
        .all()
    )


def add_member(*, project_id: int, user_id: int, added_by_user_id: int | None = None) -> ProjectMember:
    """Idempotent: an existing membership is returned unchanged. Caller commits."""
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(f"Project {project_id} not found", project_id=project_id)
    if db.session.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)

    existing = db.session.query(ProjectMember).filter_by(project_id=project_id, user_id=user_id).first()
    if existing:
        return existing

    member = ProjectMember(project_id=project_id, user_id=user_id, added_by_user_id=added_by_user_id)
    db.session.add(member)
    db.session.flush()
    return member


def remove_member(*, project_id: int, user_id: int) -> bool:
    member = db.session.query(ProjectMember).filter_by(project_id=project_id, user_id=user_id).first()
    if not member:
        return False
    db.session.delete(member)
    db.session.flush()
    return True
