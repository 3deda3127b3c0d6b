"""Initiative table and registry.

An initiative is a state/region tenant. Each one maps 1:1 to the GUID of
its initiative record in Dynamics 365. The registry is built once at
startup and is read-only afterwards.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

GUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
PLACEHOLDER_GUID_PATTERN = re.compile(r"^00000000-0000-0000-0000-00000000000[0-9]$")


def is_guid(value: Any) -> bool:
    return isinstance(value, str) and bool(GUID_PATTERN.match(value))


@dataclass(frozen=True)
class Initiative:
    id: str
    crm_tenant_guid: str
    display_name: str
    enabled: bool = True

    @property
    def is_placeholder(self) -> bool:
        return bool(PLACEHOLDER_GUID_PATTERN.match(self.crm_tenant_guid or ""))

    def issues(self) -> list[str]:
        """Configuration problems with this initiative, empty when usable."""
        if not self.crm_tenant_guid:
            return [f"{self.id}: no CRM GUID configured"]
        if self.is_placeholder:
            return [f"{self.id}: placeholder GUID {self.crm_tenant_guid}"]
        if not is_guid(self.crm_tenant_guid):
            return [f"{self.id}: malformed GUID {self.crm_tenant_guid!r}"]
        return []


DEFAULT_INITIATIVES: tuple[Initiative, ...] = (
    Initiative("ec-oregon", "b6ced3de-2993-ed11-aad1-6045bd006a3a", "Oregon", True),
    # Not yet provisioned in the CRM
    Initiative("ec-kentucky", "00000000-0000-0000-0000-000000000001", "Kentucky", False),
    Initiative("ec-arkansas", "00000000-0000-0000-0000-000000000002", "Arkansas", False),
    Initiative("ec-tennessee", "00000000-0000-0000-0000-000000000003", "Tennessee", False),
    Initiative("ec-oklahoma", "00000000-0000-0000-0000-000000000004", "Oklahoma", False),
)


class InitiativeRegistry:
    """Read-only lookup of initiatives by id and by CRM GUID.

    The GUID reverse index is keyed by lowercase GUID and only holds
    enabled initiatives.
    """

    def __init__(self, initiatives: Iterable[Initiative]):
        self._by_id: dict[str, Initiative] = {}
        for initiative in initiatives:
            if initiative.id in self._by_id:
                raise ConfigurationError(f"Duplicate initiative id: {initiative.id}")
            self._by_id[initiative.id] = initiative

        self._by_guid: dict[str, str] = {
            i.crm_tenant_guid.lower(): i.id
            for i in self._by_id.values()
            if i.enabled and i.crm_tenant_guid
        }

    @classmethod
    def from_table(
        cls, table: Mapping[str, Mapping[str, Any]], *, strict: bool = False
    ) -> "InitiativeRegistry":
        """Build from ``{id: {"crmTenantGuid" (or "d365Guid"), "displayName", "enabled"}}``.

        With ``strict`` an enabled initiative with a missing, placeholder or
        malformed GUID raises ``ConfigurationError``.
        """
        initiatives = []
        for initiative_id, row in table.items():
            initiatives.append(
                Initiative(
                    id=initiative_id,
                    crm_tenant_guid=str(
                        row.get("crmTenantGuid") or row.get("d365Guid") or row.get("crm_tenant_guid") or ""
                    ),
                    display_name=str(row.get("displayName") or row.get("display_name") or initiative_id),
                    enabled=bool(row.get("enabled", True)),
                )
            )
        registry = cls(initiatives)
        problems = registry.validate(enabled_only=True)
        if problems:
            if strict:
                raise ConfigurationError("Invalid initiative configuration: " + "; ".join(problems))
            for problem in problems:
                logger.warning("Initiative config issue: %s", problem)
        return registry

    @classmethod
    def default(cls) -> "InitiativeRegistry":
        return cls(DEFAULT_INITIATIVES)

    def get(self, initiative_id: str) -> Initiative | None:
        return self._by_id.get(initiative_id)

    def id_for_guid(self, guid: str | None) -> str | None:
        if not guid:
            return None
        return self._by_guid.get(guid.lower())

    def validate(self, enabled_only: bool = False) -> list[str]:
        problems: list[str] = []
        for initiative in self._by_id.values():
            if enabled_only and not initiative.enabled:
                continue
            problems.extend(initiative.issues())
        return problems

    def to_table(self) -> dict[str, dict[str, Any]]:
        return {
            i.id: {
                "crmTenantGuid": i.crm_tenant_guid,
                "displayName": i.display_name,
                "enabled": i.enabled,
            }
            for i in self._by_id.values()
        }

    def __iter__(self):
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, initiative_id: object) -> bool:
        return initiative_id in self._by_id
