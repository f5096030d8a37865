# Overview: Request provenance as a tagged union over the three binding modes.

"""
A resource request is raised against exactly one of:

- a specific pre-provisioned Resource row (ResourceProvenance),
- a catalog ResourceTemplate (TemplateProvenance),
- a free-text resource type matched inside the phase (TypeProvenance).

The three share one flattened row in resource_requests; this module is
the only place that maps between the row columns and the variant, so
availability and approval-depth logic can dispatch exhaustively on type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from .errors import ValidationError
from .validation import coerce_int


@dataclass(frozen=True)
class ResourceProvenance:
    resource_id: int

    kind = "resource"

    def to_columns(self) -> dict:
        return {"resource_id": self.resource_id, "resource_template_id": None, "resource_type": None}


@dataclass(frozen=True)
class TemplateProvenance:
    template_id: int

    kind = "template"

    def to_columns(self) -> dict:
        return {"resource_id": None, "resource_template_id": self.template_id, "resource_type": None}


@dataclass(frozen=True)
class TypeProvenance:
    resource_type: str

    kind = "type"

    def to_columns(self) -> dict:
        return {"resource_id": None, "resource_template_id": None, "resource_type": self.resource_type}


Provenance = Union[ResourceProvenance, TemplateProvenance, TypeProvenance]

PROVENANCE_FIELDS = ("resource_id", "resource_template_id", "resource_type")


def _is_set(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def from_fields(
    *,
    resource_id: Any = None,
    resource_template_id: Any = None,
    resource_type: Any = None,
) -> Provenance:
    """
    Build a provenance from raw input, requiring exactly one field.

    Raises ValidationError when none or more than one is set.
    """
    given = [
        name
        for name, value in (
            ("resource_id", resource_id),
            ("resource_template_id", resource_template_id),
            ("resource_type", resource_type),
        )
        if _is_set(value)
    ]
    if len(given) != 1:
        raise ValidationError(
            "Exactly one of resource_id, resource_template_id or resource_type is required",
            provided=given,
        )

    if _is_set(resource_id):
        return ResourceProvenance(coerce_int("resource_id", resource_id))
    if _is_set(resource_template_id):
        return TemplateProvenance(coerce_int("resource_template_id", resource_template_id))

    if not isinstance(resource_type, str):
        raise ValidationError("resource_type must be a string", field="resource_type")
    return TypeProvenance(resource_type.strip())


def from_payload(data: dict) -> Provenance:
    return from_fields(**{name: data.get(name) for name in PROVENANCE_FIELDS})


def from_row(row) -> Provenance:
    """Rebuild the variant from a persisted request row."""
    return from_fields(
        resource_id=row.resource_id,
        resource_template_id=row.resource_template_id,
        resource_type=row.resource_type,
    )
