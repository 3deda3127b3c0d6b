"""Tenant boundary: initiatives, group mappings and resolution."""

from .groups import (
    DEFAULT_GROUP_MAPPINGS,
    GroupMapping,
    GroupType,
    TenantBoundaryResolver,
    group_mappings_from_table,
)
from .initiatives import DEFAULT_INITIATIVES, Initiative, InitiativeRegistry, is_guid

__all__ = [
    "DEFAULT_GROUP_MAPPINGS",
    "DEFAULT_INITIATIVES",
    "GroupMapping",
    "GroupType",
    "Initiative",
    "InitiativeRegistry",
    "TenantBoundaryResolver",
    "group_mappings_from_table",
    "is_guid",
]
