"""
Resource ledger tests.

Verifies:
- availability per provenance (stored counter, derived type figure, unbounded templates)
- commit never lets consumed exceed quantity
- reconcile reports and repairs drifted counters
"""

import pytest

from infradesk.errors import InsufficientCapacityError, NotFoundError, ValidationError
from infradesk.extensions import db
from infradesk.models import RequestStatus, ResourceRequest
from infradesk.provenance import ResourceProvenance, TemplateProvenance, TypeProvenance
from infradesk.services import ledger_service


def _granted_type_request(requester, phase, resource_type, qty, status=RequestStatus.ASSIGNED_TO_IT):
    req = ResourceRequest(
        requester_id=requester.id,
        phase_id=phase.id,
        resource_type=resource_type,
        requested_qty=qty,
        requested_config={},
        status=status,
        current_level=1,
        required_levels=1,
    )
    db.session.add(req)
    db.session.commit()
    return req


def _bound_request(requester, phase, resource, qty, status=RequestStatus.APPROVED):
    req = ResourceRequest(
        requester_id=requester.id,
        phase_id=phase.id,
        resource_id=resource.id,
        requested_qty=qty,
        requested_config={},
        status=status,
        current_level=0,
        required_levels=0,
    )
    db.session.add(req)
    db.session.commit()
    return req


class TestAvailability:

    def test_resource_counter(self, phase, make_pool):
        pool = make_pool(quantity=5, consumed=2)
        snap = ledger_service.availability(ResourceProvenance(pool.id), phase_id=phase.id)
        assert (snap.available, snap.total, snap.consumed) == (3, 5, 2)
        assert snap.enforced

    def test_type_is_derived_from_granted_requests(self, phase, vm_pool, requester):
        _granted_type_request(requester, phase, "Virtual Machine", 2)
        _granted_type_request(requester, phase, "Virtual Machine", 1, status=RequestStatus.COMPLETED)
        _granted_type_request(requester, phase, "Virtual Machine", 4, status=RequestStatus.REJECTED)
        _granted_type_request(requester, phase, "Storage", 3)

        snap = ledger_service.availability(
            TypeProvenance("Virtual Machine"), phase_id=phase.id, with_allocations=True
        )

        assert (snap.available, snap.total, snap.consumed) == (2, 5, 3)
        assert [a.quantity for a in snap.allocations] == [2, 1]
        # The stored counter is untouched by type requests
        assert vm_pool.consumed_quantity == 0

    def test_type_excluding_request(self, phase, vm_pool, requester):
        req = _granted_type_request(requester, phase, "Virtual Machine", 2)
        snap = ledger_service.availability(
            TypeProvenance("Virtual Machine"), phase_id=phase.id, exclude_request_id=req.id
        )
        assert snap.consumed == 0

    def test_template_is_unbounded(self, phase, make_template):
        template = make_template(2)
        snap = ledger_service.availability(TemplateProvenance(template.id), phase_id=phase.id)
        assert not snap.enforced
        assert snap.covers(10_000)
        assert snap.to_dict()["available"] is True

    def test_template_pool_is_the_linked_resource(self, phase, make_template):
        template = make_template(1)
        pool = ledger_service.template_pool(phase.id, template.id)
        assert pool.resource_template_id == template.id
        assert pool.phase_id == phase.id

    def test_unlinked_template_is_rejected(self, phase, make_template):
        template = make_template(1, link=False)
        with pytest.raises(ValidationError) as exc:
            ledger_service.availability(TemplateProvenance(template.id), phase_id=phase.id)
        assert exc.value.message == "Resource template not available in this phase"

    def test_unknown_template(self, phase):
        with pytest.raises(NotFoundError):
            ledger_service.availability(TemplateProvenance(404), phase_id=phase.id)

    def test_unknown_phase(self, vm_pool):
        with pytest.raises(NotFoundError):
            ledger_service.availability(ResourceProvenance(vm_pool.id), phase_id=999)

    def test_unknown_type(self, phase):
        with pytest.raises(NotFoundError):
            ledger_service.availability(TypeProvenance("Quantum Computer"), phase_id=phase.id)

    def test_resource_from_other_phase(self, phase, make_pool, db_session):
        from infradesk.models import Phase
        other = Phase(project_id=phase.project_id, name="Production")
        db_session.add(other)
        db_session.commit()
        pool = make_pool(phase_id=other.id)

        with pytest.raises(ValidationError):
            ledger_service.availability(ResourceProvenance(pool.id), phase_id=phase.id)


class TestCommit:

    def test_commit_increments(self, make_pool):
        pool = make_pool(quantity=5)
        ledger_service.commit(pool.id, 3)
        db.session.commit()
        assert pool.consumed_quantity == 3

    def test_commit_to_exact_capacity(self, make_pool):
        pool = make_pool(quantity=5, consumed=2)
        ledger_service.commit(pool.id, 3)
        db.session.commit()
        assert pool.available_quantity == 0

    def test_commit_beyond_capacity(self, make_pool):
        pool = make_pool(quantity=5, consumed=3)
        with pytest.raises(InsufficientCapacityError) as exc:
            ledger_service.commit(pool.id, 3)
        db.session.rollback()

        assert exc.value.details == {"available": 2, "total": 5, "consumed": 3, "requested": 3}
        db.session.refresh(pool)
        assert pool.consumed_quantity == 3

    def test_commit_rejects_non_positive(self, make_pool):
        pool = make_pool()
        with pytest.raises(ValidationError):
            ledger_service.commit(pool.id, 0)


class TestReconcile:

    def test_reports_and_fixes_drift(self, phase, make_pool, requester):
        pool = make_pool(quantity=5, consumed=4)
        _bound_request(requester, phase, pool, 2)
        _bound_request(requester, phase, pool, 1, status=RequestStatus.REJECTED)

        report = ledger_service.reconcile()
        assert report == [{
            "resource_id": pool.id,
            "resource_type": "Virtual Machine",
            "quantity": 5,
            "recorded": 4,
            "expected": 2,
            "over_allocated": False,
            "fixed": False,
        }]
        db.session.rollback()

        fixed = ledger_service.reconcile(fix=True)
        db.session.commit()

        assert fixed[0]["fixed"] is True
        assert pool.consumed_quantity == 2
        assert ledger_service.reconcile() == []

    def test_consistent_ledger(self, phase, make_pool, requester):
        pool = make_pool(quantity=5, consumed=2)
        _bound_request(requester, phase, pool, 2)
        assert ledger_service.reconcile() == []
