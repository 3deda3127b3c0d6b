"""Identity-provider group mappings and the tenant boundary resolver."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from ..audit import AuditLogger, SecurityEventType
from ..errors import ConfigurationError, InvalidInitiativeConfig, NoInitiativeAssigned
from .initiatives import InitiativeRegistry, is_guid

logger = logging.getLogger(__name__)


class GroupType(str, Enum):
    ALL_USERS = "all-users"
    ROLE = "role"
    STANDARD = "standard"

    @property
    def rank(self) -> int:
        return _GROUP_TYPE_RANK[self]


_GROUP_TYPE_RANK = {GroupType.ALL_USERS: 0, GroupType.ROLE: 1, GroupType.STANDARD: 2}


@dataclass(frozen=True)
class GroupMapping:
    group_id: str
    initiative_id: str
    group_type: GroupType = GroupType.STANDARD
    role: str | None = None
    group_name: str | None = None


DEFAULT_GROUP_MAPPINGS: tuple[GroupMapping, ...] = (
    GroupMapping(
        "e6ae3a86-446e-40f0-a2fb-e1b83f11cd3b", "ec-oregon", GroupType.ALL_USERS,
        group_name="Partner Portal - EC Oregon - All Users",
    ),
    GroupMapping(
        "b25d4508-8b32-4e7f-bc90-d2699adb12a7", "ec-oregon", GroupType.ROLE,
        role="Foster-Partner", group_name="Partner Portal - EC Oregon - Foster Partner",
    ),
    GroupMapping(
        "f24c7dc3-3844-4037-90b8-c73c59b0ea30", "ec-oregon", GroupType.ROLE,
        role="Volunteer", group_name="Partner Portal - EC Oregon - Volunteer",
    ),
    GroupMapping(
        "6d252fee-1df8-4ba1-acf1-18c1c704f3bd", "ec-oregon", GroupType.ROLE,
        role="Foster-Partner,Volunteer",
        group_name="Partner Portal - EC Oregon - Foster and Volunteer",
    ),
    GroupMapping(
        "61f913cc-0360-482d-8373-7a7cac826eb2", "ec-kentucky", GroupType.ALL_USERS,
        group_name="Partner Portal - EC Kentucky - All Users",
    ),
    GroupMapping(
        "cb535635-98ee-4c38-a4f6-5a81ffba2f87", "ec-kentucky", GroupType.ROLE,
        role="Foster-Partner", group_name="Partner Portal - EC Kentucky - Foster Partner",
    ),
)


def group_mappings_from_table(table: Mapping[str, Mapping[str, Any]]) -> list[GroupMapping]:
    """Parse ``{group_guid: {"initiativeId", "groupType", "role", "groupName"}}``."""
    mappings = []
    for group_id, row in table.items():
        if not is_guid(group_id):
            raise ConfigurationError(f"Group mapping key is not a GUID: {group_id!r}")
        initiative_id = row.get("initiativeId") or row.get("initiative_id")
        if not initiative_id:
            raise ConfigurationError(f"Group mapping {group_id} has no initiative")
        try:
            group_type = GroupType(row.get("groupType") or row.get("group_type") or "standard")
        except ValueError as exc:
            raise ConfigurationError(f"Group mapping {group_id} has an unknown group type") from exc
        mappings.append(
            GroupMapping(
                group_id=group_id.lower(),
                initiative_id=str(initiative_id),
                group_type=group_type,
                role=row.get("role"),
                group_name=row.get("groupName") or row.get("group_name"),
            )
        )
    return mappings


class TenantBoundaryResolver:
    """Maps identity-provider groups to initiatives and initiatives to CRM GUIDs.

    Lookup tables are built in ``__init__`` and never written again, so a
    single instance is safe to share across concurrent requests.
    """

    def __init__(
        self,
        registry: InitiativeRegistry,
        mappings: Iterable[GroupMapping] = DEFAULT_GROUP_MAPPINGS,
        audit: AuditLogger | None = None,
    ):
        self.registry = registry
        self.audit = audit or AuditLogger()
        self._groups: dict[str, GroupMapping] = {}
        for mapping in mappings:
            key = mapping.group_id.lower()
            if key in self._groups:
                raise ConfigurationError(f"Duplicate group mapping: {mapping.group_id}")
            self._groups[key] = mapping

    def _matching(self, group_ids: Iterable[str] | None) -> list[GroupMapping]:
        matches = []
        for group_id in group_ids or ():
            if not is_guid(group_id):
                continue
            mapping = self._groups.get(group_id.lower())
            if mapping is not None:
                matches.append(mapping)
        return matches

    def _mapping_failed(self, reason: str, group_ids: Iterable[str] | None, user_id: str | None):
        ids = list(group_ids or ())
        self.audit.log(
            SecurityEventType.INITIATIVE_MAPPING_FAILED,
            user_id=user_id,
            result="failure",
            error_message=reason,
            details={"groupCount": len(ids), "groupIds": ids},
        )

    def resolve_initiative(self, group_ids: Iterable[str] | None, user_id: str | None = None) -> str:
        """Initiative id of the first mapped group, or ``NoInitiativeAssigned``."""
        matches = self._matching(group_ids)
        if not matches:
            self._mapping_failed("No mapped group in token claims", group_ids, user_id)
            raise NoInitiativeAssigned()
        return matches[0].initiative_id

    def resolve_all_initiatives(self, group_ids: Iterable[str] | None) -> list[GroupMapping]:
        """One mapping per distinct initiative, in first-seen order."""
        seen: set[str] = set()
        result = []
        for mapping in self._matching(group_ids):
            if mapping.initiative_id in seen:
                continue
            seen.add(mapping.initiative_id)
            result.append(mapping)
        return result

    def resolve_primary(
        self, group_ids: Iterable[str] | None, user_id: str | None = None
    ) -> tuple[str, list[str]]:
        """Pick the primary initiative for a caller in several.

        Order: all-users before role before standard, then initiative id.
        The best group type seen for an initiative is what counts.
        """
        matches = self._matching(group_ids)
        if not matches:
            self._mapping_failed("No mapped group in token claims", group_ids, user_id)
            raise NoInitiativeAssigned()

        best: dict[str, int] = {}
        for mapping in matches:
            rank = mapping.group_type.rank
            if mapping.initiative_id not in best or rank < best[mapping.initiative_id]:
                best[mapping.initiative_id] = rank

        ordered = sorted(best, key=lambda initiative_id: (best[initiative_id], initiative_id))
        primary, additional = ordered[0], ordered[1:]
        if additional:
            self.audit.log(
                SecurityEventType.ACCESS_GRANTED,
                user_id=user_id,
                initiative=primary,
                action="resolve_primary_initiative",
                result="success",
                details={"primary": primary, "additional": additional},
            )
        return primary, additional

    def get_crm_guid(self, initiative_id: str | None) -> str:
        initiative = self.registry.get(initiative_id) if initiative_id else None
        event_type = SecurityEventType.INITIATIVE_MAPPING_FAILED
        if initiative is None:
            reason = f"Unknown initiative: {initiative_id!r}"
        elif not initiative.enabled:
            reason = f"Initiative {initiative_id} is disabled"
        elif initiative.issues():
            # Enabled but carrying a placeholder or malformed GUID
            reason = "; ".join(initiative.issues())
            event_type = SecurityEventType.INVALID_CONFIGURATION
        else:
            return initiative.crm_tenant_guid

        logger.error("CRM GUID lookup failed: %s", reason)
        self.audit.log(
            event_type,
            initiative=initiative_id,
            result="failure",
            error_message=reason,
        )
        raise InvalidInitiativeConfig(reason)

    def get_initiative_id_from_guid(self, guid: str | None) -> str | None:
        return self.registry.id_for_guid(guid)

    def has_access_to_initiative(self, group_ids: Iterable[str] | None, initiative_id: str) -> bool:
        return any(m.initiative_id == initiative_id for m in self._matching(group_ids))

    def extract_roles(self, group_ids: Iterable[str] | None) -> list[str]:
        roles: list[str] = []
        for mapping in self._matching(group_ids):
            if not mapping.role:
                continue
            for role in mapping.role.split(","):
                role = role.strip()
                if role and role not in roles:
                    roles.append(role)
        return roles

    def mapping_for(self, group_id: str) -> GroupMapping | None:
        return self._groups.get(group_id.lower()) if is_guid(group_id) else None
