"""Lead routes and application factory.

Authentication happens upstream: middleware verifies the session and
stores a ``SecurityContext`` on ``request.state.security_context``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .audit import AuditLogger
from .config import PortalSettings, configure_logging, get_settings
from .context import SecurityContext
from .d365 import ClientCredentialsTokenProvider, D365Client
from .errors import LeadNotFound, PortalError
from .leads.models import LeadFilters, PageOptions
from .leads.service import LeadService
from .odata.filters import QueryParamsBuilder
from .tenancy import TenantBoundaryResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/leads", tags=["leads"])


async def get_security_context(request: Request) -> SecurityContext:
    ctx = getattr(request.state, "security_context", None)
    if not isinstance(ctx, SecurityContext):
        raise HTTPException(status_code=401, detail="Authentication required")
    return ctx


async def get_lead_service(request: Request) -> LeadService:
    service = getattr(request.app.state, "lead_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service temporarily unavailable")
    return service


@router.get("/")
async def list_leads(
    ctx: SecurityContext = Depends(get_security_context),
    service: LeadService = Depends(get_lead_service),
    search: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    page_token: str | None = Query(default=None, alias="pageToken"),
    order_by: str | None = Query(default=None, alias="orderBy"),
    order_direction: Literal["asc", "desc"] = Query(default="desc", alias="orderDirection"),
):
    page = PageOptions(
        limit=limit,
        offset=offset,
        page_token=page_token,
        order_by=order_by,
        order_direction=order_direction,
    )
    result = await service.get_leads(ctx, LeadFilters(search=search), page)
    return result.model_dump(by_alias=True, mode="json")


@router.get("/{lead_id}")
async def get_lead(
    lead_id: str,
    ctx: SecurityContext = Depends(get_security_context),
    service: LeadService = Depends(get_lead_service),
):
    lead = await service.get_lead_by_id(ctx, lead_id)
    if lead is None:
        raise LeadNotFound(lead_id)
    return lead.model_dump(by_alias=True, mode="json")


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.user_message})


def build_lead_service(settings: PortalSettings) -> tuple[LeadService, D365Client]:
    audit = AuditLogger(
        min_severity=settings.audit_min_severity,
        console_enabled=settings.audit_console_enabled,
    )
    resolver = TenantBoundaryResolver(
        settings.load_initiatives(), settings.load_group_mappings(), audit
    )
    client = D365Client(
        settings.d365_url,
        ClientCredentialsTokenProvider(
            settings.azure_tenant_id,
            settings.d365_client_id,
            settings.d365_client_secret,
            settings.d365_url,
        ),
        api_version=settings.d365_api_version,
        policy=settings.retry_policy,
        timeout=settings.d365_timeout_seconds,
        audit=audit,
    )
    params_builder = QueryParamsBuilder(audit, settings.default_page_size, settings.max_page_size)
    service = LeadService(client, resolver, audit, params_builder=params_builder)
    return service, client


def create_app(settings: PortalSettings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        service, client = build_lead_service(settings)
        app.state.lead_service = service
        try:
            yield
        finally:
            await client.close()

    app = FastAPI(title="Partner Portal", lifespan=lifespan)
    app.add_exception_handler(PortalError, portal_error_handler)
    app.include_router(router)
    return app
