"""Mandatory security filter and query parameters for lead queries.

Every lead query carries, in order:

1. ``statecode eq 0``
2. the tenant GUID equality on ``_tc_initiative_value``
3. the organization predicate, an OR over the caller's org categories
4. the optional free-text search

A caller context that cannot be scoped to an organization raises
``FailSecureEmpty``; the lead service turns that into an empty page.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from ..audit import AuditLogger, SecurityEventType
from ..context import SecurityContext
from ..errors import MissingInitiativeError
from ..leads import fields as lead_fields
from ..leads.models import LeadFilters, PageOptions
from ..tenancy import TenantBoundaryResolver
from .expressions import (
    ODATA_PARAMS,
    build_any_expression,
    build_contains_expression,
    build_filter_expression,
    build_order_by,
    combine_filters,
    validate_field_name,
)

logger = logging.getLogger(__name__)

ORGANIZATION_TYPE_PATTERN = re.compile(r"^\d+(,\d+)*$")


class FailSecureEmpty(Exception):
    """The caller must get an empty result; no upstream call may be made."""

    def __init__(self, reason: str, event_type: SecurityEventType):
        self.reason = reason
        self.event_type = event_type
        super().__init__(reason)


@dataclass(frozen=True)
class DirectLookup:
    """Organization category matched by equality on a lookup field."""

    field: str

    def predicate(self, organization_id: str) -> str:
        return build_filter_expression(self.field, "EQUALS", organization_id)


@dataclass(frozen=True)
class JunctionAny:
    """Organization category matched through a many-to-many junction."""

    navigation: str
    field: str
    alias: str = "o"

    def predicate(self, organization_id: str) -> str:
        validate_field_name(self.field)
        inner = build_filter_expression(f"{self.alias}/{self.field}", "EQUALS", organization_id)
        return build_any_expression(self.navigation, self.alias, inner)


OrganizationCategory = Union[DirectLookup, JunctionAny]

DEFAULT_ORGANIZATION_CATEGORIES: dict[str, OrganizationCategory] = {
    lead_fields.ORG_TYPE_FOSTER: DirectLookup(lead_fields.FOSTER_ORGANIZATION),
    lead_fields.ORG_TYPE_VOLUNTEER: JunctionAny(
        lead_fields.VOLUNTEER_ORG_RELATIONSHIP, lead_fields.VOLUNTEER_ORGANIZATION
    ),
}


def parse_organization_types(value: str | None) -> list[str] | None:
    """Split a type list like ``"948010000,948010001"``; ``None`` when malformed."""
    if not value or not ORGANIZATION_TYPE_PATTERN.match(value):
        return None
    return value.split(",")


@dataclass(frozen=True)
class SecureFilterExpression:
    text: str
    tenant_guid: str
    predicates: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        return self.text


class SecureFilterBuilder:
    """Builds the tenant- and organization-scoped ``$filter`` for a caller."""

    def __init__(
        self,
        resolver: TenantBoundaryResolver,
        audit: AuditLogger | None = None,
        categories: Mapping[str, OrganizationCategory] | None = None,
        tenant_field: str = lead_fields.INITIATIVE,
        search_field: str = lead_fields.NAME,
    ):
        self.resolver = resolver
        self.audit = audit or resolver.audit
        self.categories = dict(categories if categories is not None else DEFAULT_ORGANIZATION_CATEGORIES)
        self.tenant_field = validate_field_name(tenant_field)
        self.search_field = validate_field_name(search_field)

    def _fail_secure(self, ctx: SecurityContext, event_type: SecurityEventType, reason: str):
        logger.warning("Fail-secure empty result for user %s: %s", ctx.user_id, reason)
        self.audit.log(
            event_type,
            user_id=ctx.user_id,
            initiative=ctx.initiative,
            organization_id=ctx.organization_id,
            error_message=reason,
            details={"organizationLeadType": ctx.organization_lead_type},
        )
        raise FailSecureEmpty(reason, event_type)

    def organization_predicate(self, ctx: SecurityContext) -> str:
        if not ctx.organization_lead_type:
            self._fail_secure(
                ctx, SecurityEventType.MISSING_ORG_CONTEXT, "Missing organization type in session"
            )

        type_codes = parse_organization_types(ctx.organization_lead_type)
        if type_codes is None:
            self._fail_secure(
                ctx, SecurityEventType.INVALID_ORG_TYPE, "Invalid organization type format"
            )

        predicates = []
        for code, category in self.categories.items():
            if code in type_codes:
                predicates.append(category.predicate(ctx.organization_id))
        if not predicates:
            self._fail_secure(
                ctx, SecurityEventType.INVALID_ORG_TYPE, "No recognized organization type"
            )
        return combine_filters(predicates, "or")

    def build(
        self, ctx: SecurityContext, filters: LeadFilters | None = None
    ) -> SecureFilterExpression:
        predicates = [
            build_filter_expression(lead_fields.STATE_CODE, "EQUALS", lead_fields.STATE_ACTIVE)
        ]

        if not ctx.initiative:
            logger.error("Security context reached the filter builder without an initiative")
            raise MissingInitiativeError()

        tenant_guid = self.resolver.get_crm_guid(ctx.initiative)
        predicates.append(build_filter_expression(self.tenant_field, "EQUALS", tenant_guid))

        if ctx.organization_id:
            predicates.append(self.organization_predicate(ctx))

        if filters is not None and filters.search:
            predicates.append(
                build_contains_expression(self.search_field, filters.search, filters.case_sensitive)
            )

        text = combine_filters(predicates, "and")
        self.audit.filter_applied(
            ctx.user_id,
            ctx.initiative,
            {
                "organization": ctx.organization_id,
                "organizationType": ctx.organization_lead_type,
                "search": filters.search if filters else None,
                "oDataFilter": text,
            },
            "GET /api/v1/leads",
        )
        return SecureFilterExpression(text=text, tenant_guid=tenant_guid, predicates=tuple(predicates))


class QueryParamsBuilder:
    """Builds ``$select``/``$expand``/``$filter``/paging/sort params for lead queries.

    Only the sort field comes from the caller, and only through the
    allow-list in ``leads.fields``.
    """

    def __init__(
        self,
        audit: AuditLogger | None = None,
        default_page_size: int = 25,
        max_page_size: int = 100,
    ):
        self.audit = audit or AuditLogger()
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def page_size(self, limit: int | None) -> int:
        if not limit or limit < 1:
            return min(self.default_page_size, self.max_page_size)
        return min(limit, self.max_page_size)

    def order_by(self, page: PageOptions, ctx: SecurityContext | None = None) -> str:
        default = build_order_by([lead_fields.DEFAULT_SORT])
        if not page.order_by:
            return default

        field_name = lead_fields.resolve_sort_field(page.order_by)
        if field_name is None:
            logger.warning("Unknown sort field %r, using default", page.order_by)
            self.audit.log(
                SecurityEventType.INVALID_SORT_FIELD,
                user_id=ctx.user_id if ctx else None,
                initiative=ctx.initiative if ctx else None,
                details={"requestedField": page.order_by, "fallback": default},
            )
            return default
        return f"{validate_field_name(field_name)} {page.order_direction}"

    def build(
        self,
        page: PageOptions | None,
        filter_expression: SecureFilterExpression | str | None,
        ctx: SecurityContext | None = None,
    ) -> dict[str, Any]:
        page = page or PageOptions()
        params: dict[str, Any] = {
            ODATA_PARAMS["SELECT"]: ",".join(lead_fields.SELECT_FIELDS),
            ODATA_PARAMS["EXPAND"]: lead_fields.EXPAND,
        }
        if filter_expression:
            params[ODATA_PARAMS["FILTER"]] = str(filter_expression)
        params[ODATA_PARAMS["ORDER_BY"]] = self.order_by(page, ctx)
        if page.start:
            params[ODATA_PARAMS["SKIP"]] = page.start
        params[ODATA_PARAMS["TOP"]] = self.page_size(page.limit)
        params[ODATA_PARAMS["COUNT"]] = True
        return params

    def single_record_params(self) -> dict[str, Any]:
        return {
            ODATA_PARAMS["SELECT"]: ",".join(lead_fields.SELECT_FIELDS),
            ODATA_PARAMS["EXPAND"]: lead_fields.EXPAND,
        }
