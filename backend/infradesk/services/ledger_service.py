# Overview: Service-layer operations for the resource ledger; capacity reads and commits.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func

from ..errors import InsufficientCapacityError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Resource, ResourceRequest, ResourceTemplate, Phase, GRANTED_STATUSES
from ..provenance import Provenance, ResourceProvenance, TemplateProvenance, TypeProvenance
from .concurrency import claim_row, lock_for_update
"""
Resource Ledger Invariants (authoritative)

- 0 <= consumed_quantity <= quantity for every Resource row, always.
- resource_id-bound requests consume the stored counter: commit() is the
  only writer and runs inside the caller's transaction.
- resource_type-bound requests consume a derived figure:
  quantity - sum(requested_qty of granted type requests in the phase).
  No counter is stored because several logical slots share one row.
  The sum is only trusted after declared_resource(lock=True) has claimed
  the pool row inside the same transaction.
- resource_template_id-bound requests are not capacity-checked. Template
  asks are "out of pool" and judged by a human approver; this exemption is
  a policy decision and must be preserved.
  They must still be offered in the phase through a linked resource
  (template_pool).
"""


@dataclass(frozen=True)
class Allocation:
    request_id: int
    quantity: int
    requester_id: int
    status: str

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "quantity": self.quantity,
            "requester_id": self.requester_id,
            "status": self.status,
        }


@dataclass(frozen=True)
class Availability:
    """
    Capacity snapshot. `enforced=False` means the provenance is not
    capacity-bounded and every quantity field is None.
    """
    enforced: bool
    total: int | None = None
    consumed: int | None = None
    available: int | None = None
    resource_id: int | None = None
    resource_type: str | None = None
    allocations: tuple[Allocation, ...] = field(default_factory=tuple)

    def covers(self, qty: int) -> bool:
        return not self.enforced or qty <= self.available

    def to_dict(self) -> dict:
        return {
            "enforced": self.enforced,
            "available": self.available > 0 if self.enforced else True,
            "total_quantity": self.total,
            "consumed_quantity": self.consumed,
            "available_quantity": self.available,
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "allocations": [a.to_dict() for a in self.allocations],
        }


UNBOUNDED = Availability(enforced=False)


def get_resource(resource_id: int, *, lock: bool = False) -> Resource:
    q = db.session.query(Resource).filter(Resource.id == resource_id)
    if lock:
        q = lock_for_update(q)
    resource = q.first()
    if resource is None:
        raise NotFoundError(f"Resource {resource_id} not found", resource_id=resource_id)
    return resource


def declared_resource(phase_id: int, resource_type: str, *, lock: bool = False) -> Resource:
    """
    The phase's declared pool for a free-text resource type (first match
    by id).

    With lock=True the pool row is claimed with a guarded UPDATE before
    anything is summed against it, so concurrent type-bound creations and
    final approvals on the same pool run one after another.
    """
    resource = (
        db.session.query(Resource)
        .filter(Resource.phase_id == phase_id, Resource.resource_type == resource_type)
        .order_by(Resource.id.asc())
        .first()
    )
    if resource is None:
        raise NotFoundError(
            f"Resource type '{resource_type}' is not available in phase {phase_id}",
            phase_id=phase_id,
            resource_type=resource_type,
        )
    if lock:
        claim_row(Resource, resource.id, Resource.consumed_quantity)
        db.session.refresh(resource)
    return resource


def template_pool(phase_id: int, template_id: int) -> Resource:
    """
    The phase pool a catalog template is offered through.

    A template is requestable in a phase only when one of the phase's
    resources links to it. The pool's counter is not enforced for
    template requests.
    """
    template = db.session.get(ResourceTemplate, template_id)
    if template is None:
        raise NotFoundError(f"Resource template {template_id} not found", resource_template_id=template_id)

    resource = (
        db.session.query(Resource)
        .filter(Resource.phase_id == phase_id, Resource.resource_template_id == template_id)
        .order_by(Resource.id.asc())
        .first()
    )
    if resource is None:
        raise ValidationError(
            "Resource template not available in this phase",
            resource_template_id=template_id,
            phase_id=phase_id,
        )
    return resource


def _allocations(query) -> tuple[Allocation, ...]:
    rows = query.order_by(ResourceRequest.id.asc()).all()
    return tuple(
        Allocation(
            request_id=r.id,
            quantity=r.requested_qty,
            requester_id=r.requester_id,
            status=r.status.value,
        )
        for r in rows
    )


def resource_availability(resource: Resource, *, with_allocations: bool = False) -> Availability:
    """Direct read of the stored counter on a specific pool."""
    allocations: tuple[Allocation, ...] = ()
    if with_allocations:
        allocations = _allocations(
            db.session.query(ResourceRequest).filter(
                ResourceRequest.resource_id == resource.id,
                ResourceRequest.status.in_(GRANTED_STATUSES),
            )
        )
    return Availability(
        enforced=True,
        total=resource.quantity,
        consumed=resource.consumed_quantity,
        available=resource.quantity - resource.consumed_quantity,
        resource_id=resource.id,
        resource_type=resource.resource_type,
        allocations=allocations,
    )


def _granted_type_requests(resource: Resource, exclude_request_id: int | None):
    q = db.session.query(ResourceRequest).filter(
        ResourceRequest.phase_id == resource.phase_id,
        ResourceRequest.resource_type == resource.resource_type,
        ResourceRequest.resource_id.is_(None),
        ResourceRequest.status.in_(GRANTED_STATUSES),
    )
    if exclude_request_id is not None:
        q = q.filter(ResourceRequest.id != exclude_request_id)
    return q


def type_availability(
    resource: Resource,
    *,
    exclude_request_id: int | None = None,
    with_allocations: bool = False,
) -> Availability:
    """Derived availability for free-text type requests matched to `resource`."""
    q = _granted_type_requests(resource, exclude_request_id)
    consumed = q.with_entities(func.coalesce(func.sum(ResourceRequest.requested_qty), 0)).scalar()
    consumed = int(consumed or 0)
    return Availability(
        enforced=True,
        total=resource.quantity,
        consumed=consumed,
        available=resource.quantity - consumed,
        resource_id=resource.id,
        resource_type=resource.resource_type,
        allocations=_allocations(q) if with_allocations else (),
    )


def availability(
    provenance: Provenance,
    *,
    phase_id: int,
    lock: bool = False,
    with_allocations: bool = False,
    exclude_request_id: int | None = None,
) -> Availability:
    """
    availability(provenance) -> (available, total, consumed).

    Raises NotFoundError for an unknown phase, resource, type or template,
    ValidationError when the resource or template is not part of the phase.
    """
    if db.session.get(Phase, phase_id) is None:
        raise NotFoundError(f"Phase {phase_id} not found", phase_id=phase_id)

    if isinstance(provenance, ResourceProvenance):
        resource = get_resource(provenance.resource_id, lock=lock)
        if resource.phase_id != phase_id:
            raise ValidationError(
                f"Resource {resource.id} does not belong to phase {phase_id}",
                resource_id=resource.id,
                phase_id=phase_id,
            )
        return resource_availability(resource, with_allocations=with_allocations)

    if isinstance(provenance, TypeProvenance):
        resource = declared_resource(phase_id, provenance.resource_type, lock=lock)
        return type_availability(
            resource,
            exclude_request_id=exclude_request_id,
            with_allocations=with_allocations,
        )

    if isinstance(provenance, TemplateProvenance):
        template_pool(phase_id, provenance.template_id)
        return UNBOUNDED

    raise TypeError(f"Unknown provenance {provenance!r}")


def require_capacity(snapshot: Availability, qty: int) -> None:
    if not snapshot.covers(qty):
        raise InsufficientCapacityError(
            available=snapshot.available,
            total=snapshot.total,
            consumed=snapshot.consumed,
            requested=qty,
        )


def commit(resource_id: int, qty: int) -> Resource:
    """
    Atomically consume `qty` units of a resource pool.

    Conditional UPDATE: the increment only applies while
    consumed_quantity + qty <= quantity, so two transactions racing on the
    same row can never jointly over-allocate. Must run inside the same
    transaction as the state transition that triggers it; raising here
    aborts that transaction.
    """
    if qty <= 0:
        raise ValidationError("Quantity must be positive", requested=qty)

    resource = get_resource(resource_id, lock=True)

    updated = (
        db.session.query(Resource)
        .filter(
            Resource.id == resource_id,
            Resource.consumed_quantity + qty <= Resource.quantity,
        )
        .update(
            {Resource.consumed_quantity: Resource.consumed_quantity + qty},
            synchronize_session=False,
        )
    )
    db.session.refresh(resource)

    if updated != 1:
        raise InsufficientCapacityError(
            available=resource.available_quantity,
            total=resource.quantity,
            consumed=resource.consumed_quantity,
            requested=qty,
        )

    current_app.logger.info(
        "Ledger commit: resource %s consumed %s/%s (+%s)",
        resource.id, resource.consumed_quantity, resource.quantity, qty,
    )
    return resource


def reconcile(*, fix: bool = False) -> list[dict]:
    """
    Recompute each pool's consumed_quantity from its granted
    resource_id-bound requests.

    Returns one row per mismatch. With fix=True, mismatches that fit the
    pool are corrected in the current session (caller commits);
    over-allocated pools are reported only.
    """
    mismatches = []
    for resource in db.session.query(Resource).order_by(Resource.id.asc()).all():
        expected = (
            db.session.query(func.coalesce(func.sum(ResourceRequest.requested_qty), 0))
            .filter(
                ResourceRequest.resource_id == resource.id,
                ResourceRequest.status.in_(GRANTED_STATUSES),
            )
            .scalar()
        )
        expected = int(expected or 0)
        if expected == resource.consumed_quantity:
            continue

        over_allocated = expected > resource.quantity
        row = {
            "resource_id": resource.id,
            "resource_type": resource.resource_type,
            "quantity": resource.quantity,
            "recorded": resource.consumed_quantity,
            "expected": expected,
            "over_allocated": over_allocated,
            "fixed": False,
        }
        if fix and not over_allocated:
            resource.consumed_quantity = expected
            row["fixed"] = True
        mismatches.append(row)

    if fix:
        db.session.flush()
    return mismatches
