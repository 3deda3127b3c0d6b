"""Lead Query Service.

Every read is scoped to the caller's initiative and organization. Missing
or malformed organization context yields an empty page, never an error,
and a record from another initiative reads as "not found".
"""

from __future__ import annotations

import logging

from ..audit import AuditLogger, SecurityEventType
from ..context import SecurityContext
from ..d365 import D365Client, D365ConfigurationError, D365Error, RetryExhaustedError
from ..errors import InvalidInitiativeConfig, LeadQueryError, MissingInitiativeError
from ..odata.expressions import format_guid
from ..odata.filters import FailSecureEmpty, QueryParamsBuilder, SecureFilterBuilder
from ..tenancy import TenantBoundaryResolver, is_guid
from . import fields
from .mapper import LeadMapper
from .models import Lead, LeadFilters, PagedResult, PageOptions

logger = logging.getLogger(__name__)


class LeadService:
    """Reads ``tc_everychildlead`` records on behalf of a partner user.

    Usage:
        service = LeadService(client, resolver, audit)
        page = await service.get_leads(ctx, LeadFilters(search="smith"), PageOptions(limit=25))
        lead = await service.get_lead_by_id(ctx, lead_id)
    """

    def __init__(
        self,
        client: D365Client,
        resolver: TenantBoundaryResolver,
        audit: AuditLogger | None = None,
        filter_builder: SecureFilterBuilder | None = None,
        params_builder: QueryParamsBuilder | None = None,
        mapper: LeadMapper | None = None,
    ):
        self.client = client
        self.resolver = resolver
        self.audit = audit or resolver.audit
        self.filter_builder = filter_builder or SecureFilterBuilder(resolver, self.audit)
        self.params_builder = params_builder or QueryParamsBuilder(self.audit)
        self.mapper = mapper or LeadMapper(resolver, self.audit)

    def _has_organization(self, ctx: SecurityContext, resource: str) -> bool:
        if ctx.organization_id:
            return True
        logger.warning(
            "Organization ID missing from request context (user=%s, initiative=%s)",
            ctx.user_id, ctx.initiative,
        )
        self.audit.log(
            SecurityEventType.MISSING_ORG_CONTEXT,
            user_id=ctx.user_id,
            initiative=ctx.initiative,
            resource=resource,
            error_message="Organization ID missing from request context",
        )
        return False

    def _empty_page(self, ctx: SecurityContext, reason: str) -> PagedResult[Lead]:
        logger.info("Returning empty lead page: %s", reason)
        self.audit.log(
            SecurityEventType.EMPTY_RESULT_SECURITY,
            user_id=ctx.user_id,
            initiative=ctx.initiative,
            organization_id=ctx.organization_id,
            resource=fields.ENTITY_SET,
            error_message=reason,
        )
        return PagedResult[Lead].empty()

    @staticmethod
    def _query_error(exc: Exception, operation: str) -> LeadQueryError:
        if isinstance(exc, RetryExhaustedError):
            return LeadQueryError(
                f"{operation}: {exc.message}", 503, "Service temporarily unavailable",
                "SERVICE_UNAVAILABLE",
            )
        if isinstance(exc, D365Error):
            if exc.status_code == 403:
                return LeadQueryError(
                    f"{operation}: {exc.message}", 403, "Access denied to requested resource",
                    exc.code,
                )
            return LeadQueryError(
                f"{operation}: {exc.message}", exc.status_code, exc.parsed.user_message, exc.code
            )
        if isinstance(exc, D365ConfigurationError):
            return LeadQueryError(f"{operation}: {exc.message}", 500, exc.user_message, exc.code)
        return LeadQueryError(f"{operation}: {exc}", 500, f"Failed to {operation}")

    async def get_leads(
        self,
        ctx: SecurityContext,
        filters: LeadFilters | None = None,
        page: PageOptions | None = None,
    ) -> PagedResult[Lead]:
        """One page of leads visible to ``ctx``.

        Raises:
            MissingInitiativeError: ``ctx`` has no initiative
            InvalidInitiativeConfig: the initiative has no usable CRM GUID
            LeadQueryError: the CRM call failed
        """
        page = page or PageOptions()
        if not self._has_organization(ctx, "leads"):
            return self._empty_page(ctx, "Organization ID missing from request context")

        try:
            expression = self.filter_builder.build(ctx, filters)
        except FailSecureEmpty as exc:
            return self._empty_page(ctx, exc.reason)

        params = self.params_builder.build(page, expression, ctx)
        logger.info(
            "Querying leads (initiative=%s, organization=%s, filter=%s)",
            ctx.initiative, ctx.organization_id, expression.text,
        )

        try:
            data = await self.client.query(fields.ENTITY_SET, params, user_id=ctx.user_id)
        except (D365Error, D365ConfigurationError, RetryExhaustedError) as exc:
            logger.error("Lead query failed for user %s: %s", ctx.user_id, exc)
            raise self._query_error(exc, "fetch leads") from exc

        records = data.get("value") or []
        items = [self.mapper.to_lead(record, ctx) for record in records]

        start = page.start
        count = data.get("@odata.count")
        total = count if isinstance(count, int) else start + len(records)
        has_more = bool(data.get("@odata.nextLink")) or start + len(records) < total
        next_page_token = str(start + len(records)) if has_more and records else None

        self.audit.query_executed(ctx.user_id, fields.ENTITY_SET, expression.text, len(records))
        return PagedResult[Lead](items=items, total_count=total, next_page_token=next_page_token)

    async def get_lead_by_id(self, ctx: SecurityContext, lead_id: str) -> Lead | None:
        """The lead, or ``None`` if it does not exist or belongs to another initiative."""
        resource = f"lead:{lead_id}"
        if not self._has_organization(ctx, resource):
            return None

        if not is_guid(format_guid(lead_id)):
            self.audit.access_denied(ctx.user_id, resource, "Lead id is not a GUID")
            return None

        if not ctx.initiative:
            raise MissingInitiativeError()
        try:
            expected_guid = self.resolver.get_crm_guid(ctx.initiative)
        except InvalidInitiativeConfig:
            logger.error("Cannot verify initiative %s for %s; denying", ctx.initiative, resource)
            return None

        try:
            record = await self.client.get(
                fields.ENTITY_SET,
                lead_id,
                self.params_builder.single_record_params(),
                user_id=ctx.user_id,
            )
        except (D365Error, D365ConfigurationError, RetryExhaustedError) as exc:
            logger.error("Lead lookup failed for user %s: %s", ctx.user_id, exc)
            raise self._query_error(exc, "fetch lead") from exc

        if record is None:
            return None

        actual_guid = record.get(fields.INITIATIVE)
        if not actual_guid or actual_guid.lower() != expected_guid.lower():
            logger.warning(
                "Cross-initiative access attempt: user=%s lead=%s initiative=%s",
                ctx.user_id, lead_id, ctx.initiative,
            )
            self.audit.cross_tenant_attempt(
                ctx.user_id,
                ctx.initiative,
                resource,
                expected_guid,
                actual_guid,
                self.resolver.get_initiative_id_from_guid(actual_guid),
            )
            return None

        self.audit.access_granted(ctx.user_id, resource, initiative=ctx.initiative)
        return self.mapper.to_lead(record, ctx)
