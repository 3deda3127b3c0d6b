"""Partner Portal - tenant-scoped lead access for Dynamics 365."""

from .audit import AuditLogger, InMemoryAuditSink, SecurityEventType, Severity
from .context import SecurityContext
from .d365 import D365Client, RetryPolicy, StaticTokenProvider
from .errors import (
    ConfigurationError,
    InvalidInitiativeConfig,
    LeadQueryError,
    NoInitiativeAssigned,
    PortalError,
)
from .leads.models import Lead, LeadFilters, PagedResult, PageOptions
from .leads.service import LeadService
from .odata.filters import QueryParamsBuilder, SecureFilterBuilder
from .tenancy import InitiativeRegistry, TenantBoundaryResolver

__version__ = "0.1.0"

__all__ = [
    "AuditLogger",
    "InMemoryAuditSink",
    "SecurityEventType",
    "Severity",
    "SecurityContext",
    "D365Client",
    "RetryPolicy",
    "StaticTokenProvider",
    "ConfigurationError",
    "InvalidInitiativeConfig",
    "LeadQueryError",
    "NoInitiativeAssigned",
    "PortalError",
    "Lead",
    "LeadFilters",
    "PagedResult",
    "PageOptions",
    "LeadService",
    "QueryParamsBuilder",
    "SecureFilterBuilder",
    "InitiativeRegistry",
    "TenantBoundaryResolver",
]
