# Overview: Approval authority resolver; maps roles to approval levels and back.

"""
Approval authority is role-based, not assignment-based.

- level_for(role): the single approval level a role may act on
  (DEPARTMENT_HEAD -> 1, IT_HEAD -> 2, ADMIN -> 3, anything else -> 0).
- approvers_for(level): users eligible at a level. Used only to pick a
  placeholder approver for a new pending record and for notification
  fan-out. Any user whose resolved level equals the required level may
  act, not just the placeholder.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Role, User, MAX_APPROVAL_LEVELS


APPROVAL_LEVEL_BY_ROLE: dict[Role, int] = {
    Role.USER: 0,
    Role.DEPARTMENT_HEAD: 1,
    Role.IT_HEAD: 2,
    Role.IT_TEAM: 0,
    Role.ADMIN: 3,
}

ROLE_BY_LEVEL: dict[int, Role] = {
    level: role for role, level in APPROVAL_LEVEL_BY_ROLE.items() if level > 0
}

# Every role must have an explicit level; every level an owning role
assert set(APPROVAL_LEVEL_BY_ROLE) == set(Role)
assert set(ROLE_BY_LEVEL) == set(range(1, MAX_APPROVAL_LEVELS + 1))


def level_for(role: Role | str) -> int:
    """Approval level a role may act on; 0 means it cannot approve anything."""
    return APPROVAL_LEVEL_BY_ROLE[Role(role)]


def role_for_level(level: int) -> Role:
    if level not in ROLE_BY_LEVEL:
        raise ValueError(f"Approval level must be between 1 and {MAX_APPROVAL_LEVELS}, got {level}")
    return ROLE_BY_LEVEL[level]


def approvers_for(level: int) -> list[User]:
    """Active users eligible to act at `level`, oldest account first."""
    role = role_for_level(level)
    return (
        db.session.query(User)
        .filter(User.role == role, User.is_active.is_(True))
        .order_by(User.id.asc())
        .all()
    )


def first_approver_for(level: int) -> User | None:
    approvers = approvers_for(level)
    return approvers[0] if approvers else None
