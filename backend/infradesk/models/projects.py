from __future__ import annotations

from ..extensions import db
from infradesk.time_utils import to_utc_z


# Highest approval level any template/resource may require
MAX_APPROVAL_LEVELS = 3


class Project(db.Model):
    __tablename__ = "projects"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    client = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "client": self.client,
            "created_at": to_utc_z(self.created_at),
        }


class ProjectMember(db.Model):
    """
    Project membership.

    Non-admin users may raise requests and read availability only for
    phases of projects they belong to.
    """
    __tablename__ = "project_members"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_members"),
        db.Index("ix_project_members_user", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    added_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    added_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    project = db.relationship("Project", backref=db.backref("members", lazy=True))
    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("project_memberships", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "added_by_user_id": self.added_by_user_id,
            "added_at": to_utc_z(self.added_at),
        }


class Phase(db.Model):
    """A project phase; resource pools and requests are scoped to a phase."""
    __tablename__ = "phases"
    __table_args__ = (
        db.Index("ix_phases_project", "project_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    project = db.relationship("Project", backref=db.backref("phases", lazy=True, order_by="Phase.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class ResourceTemplate(db.Model):
    """
    Catalog template.

    approval_levels is the configured approval depth for requests raised
    against this template (0 = auto-approve). Template requests are not
    capacity-bounded.
    """
    __tablename__ = "resource_templates"
    __table_args__ = (
        db.CheckConstraint(
            f"approval_levels >= 0 AND approval_levels <= {MAX_APPROVAL_LEVELS}",
            name="ck_resource_templates_approval_levels",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    approval_levels = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "approval_levels": self.approval_levels,
            "is_active": self.is_active,
        }


class Resource(db.Model):
    """
    Ledger entry: a provisioned unit pool inside a project phase.

    INVARIANT: 0 <= consumed_quantity <= quantity, enforced both by the
    table constraint and by the conditional UPDATE in ledger_service.commit.
    consumed_quantity is written by the allocation engine only.
    """
    __tablename__ = "resources"
    __table_args__ = (
        db.CheckConstraint(
            "consumed_quantity >= 0 AND consumed_quantity <= quantity",
            name="ck_resources_consumed_within_quantity",
        ),
        db.CheckConstraint("quantity >= 0", name="ck_resources_quantity_non_negative"),
        db.CheckConstraint(
            f"approval_levels >= 0 AND approval_levels <= {MAX_APPROVAL_LEVELS}",
            name="ck_resources_approval_levels",
        ),
        db.Index("ix_resources_phase_type", "phase_id", "resource_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(db.Integer, db.ForeignKey("phases.id"), nullable=False)
    resource_template_id = db.Column(db.Integer, db.ForeignKey("resource_templates.id"), nullable=True)

    resource_type = db.Column(db.String(128), nullable=False)
    identifier = db.Column(db.String(128), nullable=True)
    configuration = db.Column(db.JSON, nullable=False, default=dict)

    quantity = db.Column(db.Integer, nullable=False)
    consumed_quantity = db.Column(db.Integer, nullable=False, default=0)

    # Approval depth for free-text type requests matched to this pool
    approval_levels = db.Column(db.Integer, nullable=False, default=0)

    cost_per_unit_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    phase = db.relationship("Phase", backref=db.backref("resources", lazy=True, order_by="Resource.id"))
    resource_template = db.relationship("ResourceTemplate")

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.consumed_quantity

    def __repr__(self) -> str:
        return (
            f"<Resource id={self.id} type={self.resource_type!r} "
            f"consumed={self.consumed_quantity}/{self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phase_id": self.phase_id,
            "resource_template_id": self.resource_template_id,
            "resource_type": self.resource_type,
            "identifier": self.identifier,
            "configuration": self.configuration,
            "quantity": self.quantity,
            "consumed_quantity": self.consumed_quantity,
            "available_quantity": self.available_quantity,
            "approval_levels": self.approval_levels,
            "cost_per_unit_cents": self.cost_per_unit_cents,
        }
