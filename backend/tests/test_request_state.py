"""
Request state machine tests (pure decisions, no persistence).

Verifies:
- Auto-approval rule is the same for every provenance
- Guard order: stale level, completed workflow, insufficient level
- approve advances one level; final approval hands off to IT
- reject keeps current_level and stores the reason
"""

import pytest

from infradesk.errors import (
    CompletedWorkflowError,
    InsufficientLevelError,
    StaleLevelError,
    ValidationError,
)
from infradesk.models import ApprovalStatus, RequestStatus, ResourceRequest
from infradesk.provenance import ResourceProvenance, TemplateProvenance, TypeProvenance
from infradesk.services import request_state
from infradesk.services.request_state import Action
from infradesk.time_utils import utcnow


def _request(*, status=RequestStatus.PENDING, current_level=0, required_levels=3):
    return ResourceRequest(
        resource_template_id=1,
        requested_qty=1,
        status=status,
        current_level=current_level,
        required_levels=required_levels,
    )


class TestInitialStatus:

    @pytest.mark.parametrize(
        "provenance",
        [ResourceProvenance(1), TemplateProvenance(1), TypeProvenance("Virtual Machine")],
    )
    def test_zero_levels_auto_approves_any_provenance(self, provenance):
        assert request_state.initial_status(provenance, 0) == RequestStatus.APPROVED

    def test_resource_bound_skips_chain(self):
        assert request_state.initial_status(ResourceProvenance(7), 3) == RequestStatus.APPROVED

    @pytest.mark.parametrize("provenance", [TemplateProvenance(1), TypeProvenance("Storage")])
    def test_configured_levels_start_pending(self, provenance):
        assert request_state.initial_status(provenance, 2) == RequestStatus.PENDING


class TestPlanTransition:

    def test_approve_intermediate_level_opens_next(self):
        t = request_state.plan_transition(_request(), caller_level=1, action=Action.APPROVE)
        assert t.level == 1
        assert t.to_status == RequestStatus.IN_PROGRESS
        assert t.to_level == 1
        assert t.open_level == 2
        assert not t.is_final_approval

    def test_approve_final_level_assigns_to_it(self):
        req = _request(status=RequestStatus.IN_PROGRESS, current_level=2, required_levels=3)
        t = request_state.plan_transition(req, caller_level=3, action=Action.APPROVE)
        assert t.to_status == RequestStatus.ASSIGNED_TO_IT
        assert t.to_level == 3
        assert t.open_level is None
        assert t.is_final_approval

    def test_reject_keeps_level(self):
        req = _request(status=RequestStatus.IN_PROGRESS, current_level=1, required_levels=2)
        t = request_state.plan_transition(req, caller_level=2, action=Action.REJECT)
        assert t.to_status == RequestStatus.REJECTED
        assert t.to_level == 1
        assert t.open_level is None

    def test_caller_ahead_of_next_level(self):
        with pytest.raises(InsufficientLevelError) as exc:
            request_state.plan_transition(_request(), caller_level=3, action=Action.APPROVE)
        assert exc.value.details == {"caller_level": 3, "required_level": 1}

    def test_caller_behind_next_level(self):
        req = _request(status=RequestStatus.IN_PROGRESS, current_level=1)
        with pytest.raises(InsufficientLevelError):
            request_state.plan_transition(req, caller_level=1, action=Action.APPROVE)

    def test_non_approver(self):
        with pytest.raises(InsufficientLevelError) as exc:
            request_state.plan_transition(_request(), caller_level=0, action=Action.REJECT)
        assert "do not have approval permissions" in exc.value.message

    @pytest.mark.parametrize(
        "status",
        [RequestStatus.REJECTED, RequestStatus.APPROVED, RequestStatus.ASSIGNED_TO_IT, RequestStatus.COMPLETED],
    )
    def test_closed_request(self, status):
        req = _request(status=status, current_level=1, required_levels=3)
        with pytest.raises(CompletedWorkflowError):
            request_state.plan_transition(req, caller_level=2, action=Action.APPROVE)

    def test_completed_check_precedes_level_check(self):
        req = _request(status=RequestStatus.REJECTED, current_level=0, required_levels=1)
        with pytest.raises(CompletedWorkflowError):
            request_state.plan_transition(req, caller_level=0, action=Action.APPROVE)

    def test_expected_level_mismatch_is_stale(self):
        req = _request(status=RequestStatus.IN_PROGRESS, current_level=1)
        with pytest.raises(StaleLevelError) as exc:
            request_state.plan_transition(req, caller_level=1, action=Action.APPROVE, expected_level=1)
        assert exc.value.details == {"expected_level": 1, "current_level": 1}

    def test_expected_level_match(self):
        req = _request(status=RequestStatus.IN_PROGRESS, current_level=1)
        t = request_state.plan_transition(req, caller_level=2, action=Action.APPROVE, expected_level=2)
        assert t.level == 2


class TestActionParse:

    @pytest.mark.parametrize("raw,expected", [("approve", Action.APPROVE), (" REJECT ", Action.REJECT)])
    def test_parse(self, raw, expected):
        assert Action.parse(raw) is expected

    @pytest.mark.parametrize("raw", [None, "", "escalate"])
    def test_parse_invalid(self, raw):
        with pytest.raises(ValidationError):
            Action.parse(raw)


class TestRecordDecision:

    def test_approve_stamps_time(self):
        t = request_state.plan_transition(_request(), caller_level=1, action=Action.APPROVE)
        now = utcnow()
        values = request_state.record_decision(t, actor_id=9, comments="ok", now=now)
        assert values == {
            "status": ApprovalStatus.APPROVED,
            "approver_id": 9,
            "comments": "ok",
            "approved_at": now,
        }

    def test_reject_sets_reason_on_request(self):
        req = _request()
        t = request_state.plan_transition(req, caller_level=1, action=Action.REJECT)
        values = request_state.record_decision(t, actor_id=9, comments="too big", now=utcnow())
        request_state.apply_to_request(req, t, comments="too big")

        assert values["status"] == ApprovalStatus.REJECTED
        assert values["approved_at"] is None
        assert req.status == RequestStatus.REJECTED
        assert req.rejection_reason == "too big"
        assert req.current_level == 0
