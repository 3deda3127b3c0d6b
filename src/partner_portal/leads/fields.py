"""Dynamics 365 field names for the ``tc_everychildlead`` entity."""

from __future__ import annotations

ENTITY_SET = "tc_everychildleads"

ID = "tc_everychildleadid"
NAME = "tc_name"
STATUS = "tc_ecleadlifecyclestatus"
ENGAGEMENT_INTEREST = "tc_engagementinterest"
LEAD_SCORE = "tc_leadscore2"
STATE_CODE = "statecode"
CREATED_ON = "createdon"
MODIFIED_ON = "modifiedon"
CONTACT_VALUE = "_tc_contact_value"
LEAD_OWNER_VALUE = "_tc_leadowner_value"
INITIATIVE = "_tc_initiative_value"
FOSTER_ORGANIZATION = "_tc_fosterorganization_value"

CONTACT_NAV = "tc_Contact"
LEAD_OWNER_NAV = "tc_LeadOwner"

# Lead <-> volunteer organization junction (1:N from the lead side)
VOLUNTEER_ORG_RELATIONSHIP = "tc_tc_ecleadsvolunteerorg_ECLead_tc_everychi"
VOLUNTEER_ORGANIZATION = "_tc_volunteerorganization_value"

STATE_ACTIVE = 0

# Organization category codes (tc_organizationleadtype)
ORG_TYPE_FOSTER = "948010000"
ORG_TYPE_VOLUNTEER = "948010001"

SELECT_FIELDS = (
    ID,
    NAME,
    STATUS,
    ENGAGEMENT_INTEREST,
    LEAD_SCORE,
    CREATED_ON,
    MODIFIED_ON,
    INITIATIVE,
    FOSTER_ORGANIZATION,
    CONTACT_VALUE,
    LEAD_OWNER_VALUE,
)

EXPAND = f"{CONTACT_NAV}($select=fullname,emailaddress1),{LEAD_OWNER_NAV}($select=fullname)"

DEFAULT_SORT = (MODIFIED_ON, "desc")

# External (API) sort names -> CRM fields. CRM names are accepted as-is.
SORT_FIELD_MAP = {
    "id": ID,
    "name": NAME,
    "status": STATUS,
    "type": ENGAGEMENT_INTEREST,
    "leadScore": LEAD_SCORE,
    "createdAt": CREATED_ON,
    "updatedAt": MODIFIED_ON,
    "assignedOrganizationName": FOSTER_ORGANIZATION,
    "initiativeId": INITIATIVE,
    # Expanded navigation values cannot be sorted server-side
    "contactName": f"{CONTACT_NAV}/fullname",
    "contactEmail": f"{CONTACT_NAV}/emailaddress1",
    "assignedToName": f"{LEAD_OWNER_NAV}/fullname",
}

SORTABLE_FIELDS = frozenset(
    list(SELECT_FIELDS) + [v for v in SORT_FIELD_MAP.values() if "/" not in v]
)


def resolve_sort_field(name: str | None) -> str | None:
    """CRM field for an external sort name, or ``None`` if it is not sortable."""
    if not name:
        return None
    field = SORT_FIELD_MAP.get(name, name)
    if field not in SORTABLE_FIELDS:
        return None
    return field
