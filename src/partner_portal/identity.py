"""Verified identity claims to ``SecurityContext``.

A caller arrives with one of two claim shapes, decided once by
``parse_claims``:

- ``GroupClaims``: identity-provider group GUIDs that still have to be
  mapped to an initiative.
- ``InitiativeClaim``: a session that already carries its initiative.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Union

from .context import SecurityContext
from .errors import NoInitiativeAssigned
from .tenancy import TenantBoundaryResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Organization:
    id: str
    name: str | None = None
    lead_type: str | None = None


@dataclass(frozen=True)
class GroupClaims:
    user_id: str | None
    group_ids: tuple[str, ...]
    organization: Organization | None = None


@dataclass(frozen=True)
class InitiativeClaim:
    user_id: str | None
    initiative: str
    organization: Organization | None = None


Claims = Union[GroupClaims, InitiativeClaim]


def _organization(payload: Mapping[str, Any]) -> Organization | None:
    nested = payload.get("organization")
    if isinstance(nested, Mapping) and nested.get("id"):
        return Organization(
            id=str(nested["id"]),
            name=nested.get("name"),
            lead_type=nested.get("organizationLeadType") or nested.get("leadType"),
        )
    if payload.get("organizationId"):
        return Organization(
            id=str(payload["organizationId"]),
            name=payload.get("organizationName"),
            lead_type=payload.get("organizationLeadType"),
        )
    return None


def parse_claims(payload: Mapping[str, Any]) -> Claims:
    """Pick the claim variant. A pre-resolved ``initiative`` wins over ``groups``."""
    user_id = payload.get("sub") or payload.get("oid") or payload.get("userId")
    organization = _organization(payload)

    initiative = payload.get("initiative")
    if isinstance(initiative, str) and initiative:
        return InitiativeClaim(user_id=user_id, initiative=initiative, organization=organization)

    groups = payload.get("groups")
    if isinstance(groups, (list, tuple)) and groups:
        return GroupClaims(
            user_id=user_id,
            group_ids=tuple(str(g) for g in groups),
            organization=organization,
        )

    logger.warning("Claims for user %s carry neither an initiative nor groups", user_id)
    raise NoInitiativeAssigned("Claims carry neither an initiative nor groups")


def security_context_from_claims(
    claims: Claims, resolver: TenantBoundaryResolver
) -> SecurityContext:
    if isinstance(claims, InitiativeClaim):
        initiative = claims.initiative
    elif isinstance(claims, GroupClaims):
        if len(resolver.resolve_all_initiatives(claims.group_ids)) > 1:
            initiative, _ = resolver.resolve_primary(claims.group_ids, claims.user_id)
        else:
            initiative = resolver.resolve_initiative(claims.group_ids, claims.user_id)
    else:
        raise TypeError(f"Unsupported claims type: {type(claims).__name__}")

    org = claims.organization
    return SecurityContext(
        initiative=initiative,
        organization_id=org.id if org else None,
        organization_lead_type=org.lead_type if org else None,
        user_id=claims.user_id,
        organization_name=org.name if org else None,
    )
