"""
Approval authority resolver tests.

Verifies:
- Each role maps to exactly one approval level
- approvers_for returns active users of the owning role, oldest first
- Out-of-range levels are rejected
"""

import pytest

from infradesk.models import Role
from infradesk.services import authority_service


class TestLevelFor:

    @pytest.mark.parametrize(
        "role,level",
        [
            (Role.USER, 0),
            (Role.DEPARTMENT_HEAD, 1),
            (Role.IT_HEAD, 2),
            (Role.IT_TEAM, 0),
            (Role.ADMIN, 3),
        ],
    )
    def test_role_levels(self, role, level):
        assert authority_service.level_for(role) == level

    def test_accepts_role_value_strings(self):
        assert authority_service.level_for("IT_HEAD") == 2

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            authority_service.level_for("SUPERVISOR")

    def test_every_level_has_an_owner(self):
        assert [authority_service.role_for_level(n) for n in (1, 2, 3)] == [
            Role.DEPARTMENT_HEAD,
            Role.IT_HEAD,
            Role.ADMIN,
        ]


class TestApproversFor:

    def test_returns_active_users_of_role_in_id_order(self, make_user):
        first = make_user(Role.DEPARTMENT_HEAD)
        make_user(Role.DEPARTMENT_HEAD, is_active=False)
        second = make_user(Role.DEPARTMENT_HEAD)
        make_user(Role.IT_HEAD)

        approvers = authority_service.approvers_for(1)

        assert [u.id for u in approvers] == [first.id, second.id]
        assert authority_service.first_approver_for(1).id == first.id

    def test_no_eligible_users(self, make_user):
        make_user(Role.USER)
        assert authority_service.approvers_for(2) == []
        assert authority_service.first_approver_for(2) is None

    @pytest.mark.parametrize("level", [0, 4, -1])
    def test_out_of_range_level(self, level):
        with pytest.raises(ValueError):
            authority_service.approvers_for(level)
