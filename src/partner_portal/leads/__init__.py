"""Lead read path: field constants, schemas, mapping and the query service."""

from .models import Lead, LeadFilters, LeadStatus, LeadType, PagedResult, PageOptions

__all__ = ["Lead", "LeadFilters", "LeadStatus", "LeadType", "PagedResult", "PageOptions"]
