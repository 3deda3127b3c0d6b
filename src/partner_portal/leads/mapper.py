"""Raw ``tc_everychildlead`` records to ``Lead``."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..audit import AuditLogger, SecurityEventType
from ..context import SecurityContext
from ..tenancy import TenantBoundaryResolver
from . import fields
from .models import Lead

logger = logging.getLogger(__name__)

LEAD_STATUS_MAP = {
    948010000: "assigned",
    948010001: "in-progress",
    948010002: "certified",
    948010003: "on-hold",
    948010004: "closed",
    948010005: "assigned",
}

DEFAULT_STATUS = "other"
DEFAULT_TYPE = "other"


def map_lead_status(value: Any) -> str:
    try:
        return LEAD_STATUS_MAP.get(int(value), DEFAULT_STATUS)
    except (TypeError, ValueError):
        return DEFAULT_STATUS


def map_lead_type(engagement_interest: Any) -> str:
    """Multi-select values arrive as ``"948010000,948010001"``; foster wins."""
    if engagement_interest is None:
        return DEFAULT_TYPE
    text = str(engagement_interest)
    if fields.ORG_TYPE_FOSTER in text:
        return "foster"
    if fields.ORG_TYPE_VOLUNTEER in text:
        return "volunteer"
    return DEFAULT_TYPE


def _parse_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable CRM timestamp %r", value)
        return None


class LeadMapper:
    def __init__(self, resolver: TenantBoundaryResolver, audit: AuditLogger | None = None):
        self.resolver = resolver
        self.audit = audit or resolver.audit

    def initiative_id_for(self, record: dict[str, Any], ctx: SecurityContext | None = None) -> str:
        guid = record.get(fields.INITIATIVE)
        initiative_id = self.resolver.get_initiative_id_from_guid(guid)
        if initiative_id is None:
            logger.warning(
                "Unknown CRM initiative GUID on lead %s", record.get(fields.ID)
            )
            self.audit.log(
                SecurityEventType.UNKNOWN_TENANT_GUID,
                user_id=ctx.user_id if ctx else None,
                initiative=ctx.initiative if ctx else None,
                resource=f"lead:{record.get(fields.ID)}",
                details={"unknownGuid": guid},
            )
            return ""
        return initiative_id

    def to_lead(self, record: dict[str, Any], ctx: SecurityContext | None = None) -> Lead:
        contact = record.get(fields.CONTACT_NAV) or {}
        owner = record.get(fields.LEAD_OWNER_NAV) or {}
        engagement = record.get(fields.ENGAGEMENT_INTEREST)
        organization_name = ctx.organization_name if ctx else None

        return Lead(
            id=str(record.get(fields.ID) or ""),
            name=record.get(fields.NAME) or "",
            subject_name=contact.get("fullname"),
            subject_email=contact.get("emailaddress1"),
            lead_owner_name=owner.get("fullname"),
            assigned_organization_id=ctx.organization_id if ctx and organization_name else None,
            assigned_organization_name=organization_name,
            status=map_lead_status(record.get(fields.STATUS)),
            type=map_lead_type(engagement),
            lead_score=record.get(fields.LEAD_SCORE),
            engagement_interest=str(engagement) if engagement is not None else None,
            initiative_id=self.initiative_id_for(record, ctx),
            created_at=_parse_datetime(record.get(fields.CREATED_ON)),
            updated_at=_parse_datetime(record.get(fields.MODIFIED_ON)),
        )
