from __future__ import annotations

import enum

from ..extensions import db
from .. import provenance as provenance_mod
from infradesk.time_utils import to_utc_z


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ASSIGNED_TO_IT = "ASSIGNED_TO_IT"
    COMPLETED = "COMPLETED"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# States that still accept an approval action
OPEN_STATUSES = frozenset({RequestStatus.PENDING, RequestStatus.IN_PROGRESS})

# States that hold capacity for free-text type requests
GRANTED_STATUSES = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.ASSIGNED_TO_IT,
    RequestStatus.COMPLETED,
})


class ResourceRequest(db.Model):
    """
    One ask for N units of a resource.

    PROVENANCE: exactly one of resource_id / resource_template_id /
    resource_type is set (ck_resource_requests_one_provenance). Use the
    `provenance` property for the typed variant.

    CONCURRENCY: version_id is the optimistic-lock column; two approvers
    racing on the same row cannot both flush a transition.
    """
    __tablename__ = "resource_requests"
    __table_args__ = (
        db.CheckConstraint(
            "(CASE WHEN resource_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN resource_template_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN resource_type IS NOT NULL THEN 1 ELSE 0 END) = 1",
            name="ck_resource_requests_one_provenance",
        ),
        db.CheckConstraint("requested_qty > 0", name="ck_resource_requests_qty_positive"),
        db.CheckConstraint(
            "current_level >= 0 AND current_level <= required_levels",
            name="ck_resource_requests_level_bounds",
        ),
        db.Index("ix_resource_requests_phase_type_status", "phase_id", "resource_type", "status"),
        db.Index("ix_resource_requests_requester", "requester_id"),
        db.Index("ix_resource_requests_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    phase_id = db.Column(db.Integer, db.ForeignKey("phases.id"), nullable=False)

    resource_id = db.Column(db.Integer, db.ForeignKey("resources.id"), nullable=True)
    resource_template_id = db.Column(db.Integer, db.ForeignKey("resource_templates.id"), nullable=True)
    resource_type = db.Column(db.String(128), nullable=True)

    # Opaque to the engine: stored and forwarded only
    requested_config = db.Column(db.JSON, nullable=False, default=dict)
    requested_qty = db.Column(db.Integer, nullable=False)
    justification = db.Column(db.Text, nullable=True)

    status = db.Column(
        db.Enum(RequestStatus, native_enum=False, length=32),
        nullable=False,
        default=RequestStatus.PENDING,
    )
    current_level = db.Column(db.Integer, nullable=False, default=0)
    required_levels = db.Column(db.Integer, nullable=False, default=0)
    rejection_reason = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # IT hand-off (ASSIGNED_TO_IT -> COMPLETED)
    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completion_notes = db.Column(db.Text, nullable=True)
    credentials = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    requester = db.relationship("User", foreign_keys=[requester_id])
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_user_id])
    completed_by = db.relationship("User", foreign_keys=[completed_by_id])
    phase = db.relationship("Phase")
    resource = db.relationship("Resource")
    resource_template = db.relationship("ResourceTemplate")
    approvals = db.relationship(
        "ApprovalRecord",
        back_populates="resource_request",
        order_by="ApprovalRecord.approval_level",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def provenance(self) -> provenance_mod.Provenance:
        return provenance_mod.from_row(self)

    @property
    def next_required_level(self) -> int:
        return self.current_level + 1

    @property
    def resource_label(self) -> str:
        if self.resource_template is not None:
            return self.resource_template.name
        if self.resource is not None:
            return self.resource.resource_type
        return self.resource_type or "Resource"

    def approval_for_level(self, level: int) -> "ApprovalRecord | None":
        for record in self.approvals:
            if record.approval_level == level:
                return record
        return None

    def __repr__(self) -> str:
        return (
            f"<ResourceRequest id={self.id} status={self.status.value} "
            f"level={self.current_level}/{self.required_levels}>"
        )

    def to_dict(self, *, include_approvals: bool = True, include_credentials: bool = False) -> dict:
        data = {
            "id": self.id,
            "requester_id": self.requester_id,
            "phase_id": self.phase_id,
            "provenance": self.provenance.kind,
            "resource_id": self.resource_id,
            "resource_template_id": self.resource_template_id,
            "resource_type": self.resource_type,
            "resource_label": self.resource_label,
            "requested_config": self.requested_config,
            "requested_qty": self.requested_qty,
            "justification": self.justification,
            "status": self.status.value,
            "current_level": self.current_level,
            "required_levels": self.required_levels,
            "rejection_reason": self.rejection_reason,
            "approved_at": to_utc_z(self.approved_at),
            "assigned_to_user_id": self.assigned_to_user_id,
            "assigned_at": to_utc_z(self.assigned_at),
            "completed_by_id": self.completed_by_id,
            "completed_at": to_utc_z(self.completed_at),
            "completion_notes": self.completion_notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        # Provisioning secrets go only to the requester and IT staff
        if include_credentials:
            data["credentials"] = self.credentials
        if include_approvals:
            data["approvals"] = [record.to_dict() for record in self.approvals]
        return data


class ApprovalRecord(db.Model):
    """
    One row per (request, level), created when that level becomes the
    next required level. Moves exactly once from PENDING to a terminal
    value; never deleted.
    """
    __tablename__ = "approval_records"
    __table_args__ = (
        db.UniqueConstraint(
            "resource_request_id", "approval_level", name="uq_approval_records_request_level"
        ),
        db.CheckConstraint("approval_level >= 1", name="ck_approval_records_level_positive"),
        db.Index("ix_approval_records_approver_status", "approver_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    resource_request_id = db.Column(db.Integer, db.ForeignKey("resource_requests.id"), nullable=False)
    approval_level = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.Enum(ApprovalStatus, native_enum=False, length=16),
        nullable=False,
        default=ApprovalStatus.PENDING,
    )

    # Placeholder candidate until acted on, then the acting approver
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    comments = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    resource_request = db.relationship("ResourceRequest", back_populates="approvals")
    approver = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "resource_request_id": self.resource_request_id,
            "approval_level": self.approval_level,
            "status": self.status.value,
            "approver_id": self.approver_id,
            "approver": self.approver.to_summary() if self.approver else None,
            "comments": self.comments,
            "approved_at": to_utc_z(self.approved_at),
            "created_at": to_utc_z(self.created_at),
        }
