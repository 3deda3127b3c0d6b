"""Per-request security context."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SecurityContext:
    """Verified caller identity used to scope every CRM query.

    ``organization_lead_type`` is the comma-separated list of organization
    category codes, e.g. ``"948010000,948010001"``.
    """

    initiative: str
    organization_id: str | None = None
    organization_lead_type: str | None = None
    user_id: str | None = None
    organization_name: str | None = None

    @property
    def has_organization(self) -> bool:
        return bool(self.organization_id)
