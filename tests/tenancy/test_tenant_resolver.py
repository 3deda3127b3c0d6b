"""Tests for initiatives, group mappings and the tenant boundary resolver."""

import pytest

from partner_portal.audit import SecurityEventType
from partner_portal.errors import ConfigurationError, InvalidInitiativeConfig, NoInitiativeAssigned
from partner_portal.tenancy import (
    DEFAULT_INITIATIVES,
    GroupMapping,
    GroupType,
    Initiative,
    InitiativeRegistry,
    TenantBoundaryResolver,
    group_mappings_from_table,
    is_guid,
)
from tests.conftest import (
    ARKANSAS_GUID,
    KENTUCKY_ALL_USERS_GROUP,
    OREGON_ALL_USERS_GROUP,
    OREGON_BOTH_GROUP,
    OREGON_FOSTER_GROUP,
    OREGON_GUID,
    OREGON_VOLUNTEER_GROUP,
    UNMAPPED_GUID,
)


class TestInitiative:
    """Tests for Initiative validation."""

    def test_valid(self):
        """Should report no issues for a real GUID."""
        assert Initiative("ec-oregon", OREGON_GUID, "Oregon").issues() == []

    def test_placeholder(self):
        """Should flag all-zero placeholder GUIDs."""
        initiative = Initiative("ec-x", "00000000-0000-0000-0000-000000000003", "X")

        assert initiative.is_placeholder
        assert "placeholder" in initiative.issues()[0]

    def test_missing_and_malformed(self):
        """Should flag empty and malformed GUIDs."""
        assert "no CRM GUID" in Initiative("ec-x", "", "X").issues()[0]
        assert "malformed" in Initiative("ec-x", "not-a-guid", "X").issues()[0]

    def test_is_guid_case_insensitive(self):
        """Should accept either case but not braces."""
        assert is_guid(OREGON_GUID.upper())
        assert not is_guid("{" + OREGON_GUID + "}")
        assert not is_guid(None)


class TestInitiativeRegistry:
    """Tests for InitiativeRegistry."""

    def test_defaults_only_enable_oregon(self):
        """Should ship with only Oregon enabled."""
        registry = InitiativeRegistry.default()

        assert len(registry) == len(DEFAULT_INITIATIVES)
        assert [i.id for i in registry if i.enabled] == ["ec-oregon"]
        assert registry.validate(enabled_only=True) == []
        assert len(registry.validate()) == 4

    def test_reverse_lookup_is_case_insensitive(self, registry):
        """Should find initiatives by GUID in either case."""
        assert registry.id_for_guid(OREGON_GUID.upper()) == "ec-oregon"
        assert registry.id_for_guid(None) is None

    def test_disabled_not_in_reverse_index(self, registry):
        """Should not resolve disabled initiatives by GUID."""
        assert registry.id_for_guid("00000000-0000-0000-0000-000000000001") is None

    def test_duplicate_id_rejected(self):
        """Should reject duplicate initiative ids."""
        with pytest.raises(ConfigurationError, match="Duplicate"):
            InitiativeRegistry([Initiative("a", OREGON_GUID, "A"), Initiative("a", ARKANSAS_GUID, "A")])

    def test_from_table(self):
        """Should accept both GUID keys and default the display name."""
        registry = InitiativeRegistry.from_table({
            "ec-oregon": {"crmTenantGuid": OREGON_GUID, "displayName": "Oregon"},
            "ec-arkansas": {"d365Guid": ARKANSAS_GUID, "enabled": False},
        })

        assert registry.get("ec-oregon").display_name == "Oregon"
        assert registry.get("ec-arkansas").display_name == "ec-arkansas"
        assert not registry.get("ec-arkansas").enabled
        assert "ec-arkansas" in registry

    def test_from_table_strict_rejects_placeholder(self):
        """Should reject enabled placeholders in strict mode."""
        table = {"ec-x": {"crmTenantGuid": "00000000-0000-0000-0000-000000000002"}}

        with pytest.raises(ConfigurationError, match="placeholder"):
            InitiativeRegistry.from_table(table, strict=True)

    def test_from_table_lenient_keeps_placeholder(self):
        """Should keep enabled placeholders in lenient mode."""
        table = {"ec-x": {"crmTenantGuid": "00000000-0000-0000-0000-000000000002"}}

        registry = InitiativeRegistry.from_table(table)

        assert registry.validate(enabled_only=True)

    def test_to_table_round_trip(self, registry):
        """Should survive to_table and from_table."""
        assert InitiativeRegistry.from_table(registry.to_table()).to_table() == registry.to_table()


class TestGroupMappings:
    """Tests for group mapping tables."""

    def test_from_table(self):
        """Should lowercase group ids and parse the group type."""
        mappings = group_mappings_from_table({
            OREGON_FOSTER_GROUP.upper(): {
                "initiativeId": "ec-oregon", "groupType": "role", "role": "Foster-Partner",
            },
        })

        assert mappings == [
            GroupMapping(OREGON_FOSTER_GROUP, "ec-oregon", GroupType.ROLE, "Foster-Partner"),
        ]

    def test_non_guid_key(self):
        """Should reject group keys that are not GUIDs."""
        with pytest.raises(ConfigurationError):
            group_mappings_from_table({"admins": {"initiativeId": "ec-oregon"}})

    def test_missing_initiative(self):
        """Should require an initiative id."""
        with pytest.raises(ConfigurationError):
            group_mappings_from_table({OREGON_FOSTER_GROUP: {}})

    def test_unknown_group_type(self):
        """Should reject unknown group types."""
        with pytest.raises(ConfigurationError):
            group_mappings_from_table({OREGON_FOSTER_GROUP: {"initiativeId": "x", "groupType": "admin"}})

    def test_duplicate_mapping_rejected(self, registry):
        """Should reject the same group mapped twice."""
        mapping = GroupMapping(OREGON_FOSTER_GROUP, "ec-oregon")

        with pytest.raises(ConfigurationError):
            TenantBoundaryResolver(registry, [mapping, mapping])


class TestResolveInitiative:
    """Tests for group-to-initiative resolution."""

    def test_first_match_wins(self, resolver):
        """Should return the first mapped group in claim order."""
        groups = [UNMAPPED_GUID, KENTUCKY_ALL_USERS_GROUP, OREGON_ALL_USERS_GROUP]

        assert resolver.resolve_initiative(groups) == "ec-kentucky"

    def test_case_insensitive_and_ignores_garbage(self, resolver):
        """Should ignore non-GUID entries and match case-insensitively."""
        assert resolver.resolve_initiative(["not-a-guid", OREGON_FOSTER_GROUP.upper()]) == "ec-oregon"

    @pytest.mark.parametrize("groups", [None, [], [UNMAPPED_GUID]])
    def test_no_match(self, resolver, audit_sink, groups):
        """Test 403 and an audit event when nothing maps."""
        with pytest.raises(NoInitiativeAssigned) as exc_info:
            resolver.resolve_initiative(groups, user_id="u1")

        assert exc_info.value.status_code == 403
        event = audit_sink.of_type(SecurityEventType.INITIATIVE_MAPPING_FAILED)[0]
        assert event.user_id == "u1"

    def test_resolve_all_deduplicates(self, resolver):
        """Should list each initiative once."""
        mappings = resolver.resolve_all_initiatives(
            [OREGON_FOSTER_GROUP, OREGON_VOLUNTEER_GROUP, KENTUCKY_ALL_USERS_GROUP]
        )

        assert [m.initiative_id for m in mappings] == ["ec-oregon", "ec-kentucky"]

    def test_has_access(self, resolver):
        """Should check membership of a specific initiative."""
        assert resolver.has_access_to_initiative([OREGON_FOSTER_GROUP], "ec-oregon")
        assert not resolver.has_access_to_initiative([OREGON_FOSTER_GROUP], "ec-kentucky")


class TestResolvePrimary:
    """Tests for primary initiative selection."""

    def test_all_users_beats_role(self, resolver, audit_sink):
        """Should prefer an all-users group over a role group."""
        primary, additional = resolver.resolve_primary(
            [OREGON_FOSTER_GROUP, KENTUCKY_ALL_USERS_GROUP], user_id="u1"
        )

        assert primary == "ec-kentucky"
        assert additional == ["ec-oregon"]
        event = audit_sink.of_type(SecurityEventType.ACCESS_GRANTED)[0]
        assert event.details == {"primary": "ec-kentucky", "additional": ["ec-oregon"]}

    def test_tie_broken_by_id(self, resolver):
        """Should break ties by initiative id."""
        primary, additional = resolver.resolve_primary([OREGON_ALL_USERS_GROUP, KENTUCKY_ALL_USERS_GROUP])

        assert primary == "ec-kentucky"
        assert additional == ["ec-oregon"]

    def test_single_initiative_not_audited(self, resolver, audit_sink):
        """Should only audit multi-initiative users."""
        assert resolver.resolve_primary([OREGON_FOSTER_GROUP]) == ("ec-oregon", [])
        assert audit_sink.events == []

    def test_no_match(self, resolver):
        """Should raise when nothing maps."""
        with pytest.raises(NoInitiativeAssigned):
            resolver.resolve_primary([UNMAPPED_GUID])


class TestCrmGuid:
    """Tests for initiative <-> CRM GUID lookups."""

    def test_round_trip(self, resolver, registry):
        """Should map each enabled initiative to its GUID and back."""
        for initiative in registry:
            if initiative.enabled:
                guid = resolver.get_crm_guid(initiative.id)
                assert resolver.get_initiative_id_from_guid(guid) == initiative.id

    def test_unknown_initiative(self, resolver, audit_sink):
        """Should raise and audit for an unknown initiative."""
        with pytest.raises(InvalidInitiativeConfig, match="Unknown initiative"):
            resolver.get_crm_guid("ec-nowhere")

        assert audit_sink.of_type(SecurityEventType.INITIATIVE_MAPPING_FAILED)

    def test_disabled_initiative(self, resolver, audit_sink):
        """Disabled initiatives are a mapping failure, not a configuration fault."""
        with pytest.raises(InvalidInitiativeConfig, match="disabled"):
            resolver.get_crm_guid("ec-kentucky")

        assert audit_sink.of_type(SecurityEventType.INITIATIVE_MAPPING_FAILED)
        assert not audit_sink.of_type(SecurityEventType.INVALID_CONFIGURATION)

    def test_enabled_placeholder(self, audit, audit_sink):
        """An enabled initiative with a placeholder GUID is flagged as invalid configuration."""
        registry = InitiativeRegistry([Initiative("ec-x", "00000000-0000-0000-0000-000000000004", "X")])
        resolver = TenantBoundaryResolver(registry, [], audit)

        with pytest.raises(InvalidInitiativeConfig, match="placeholder"):
            resolver.get_crm_guid("ec-x")

        event = audit_sink.of_type(SecurityEventType.INVALID_CONFIGURATION)[0]
        assert event.initiative == "ec-x"
        assert event.result == "failure"
        assert not audit_sink.of_type(SecurityEventType.INITIATIVE_MAPPING_FAILED)

    def test_unknown_guid(self, resolver):
        """Should return None for an unregistered GUID."""
        assert resolver.get_initiative_id_from_guid(UNMAPPED_GUID) is None


class TestRoles:
    """Tests for role extraction."""

    def test_roles_split_and_deduplicated(self, resolver):
        """Should split combined roles and drop duplicates."""
        roles = resolver.extract_roles([OREGON_FOSTER_GROUP, OREGON_BOTH_GROUP, OREGON_ALL_USERS_GROUP])

        assert roles == ["Foster-Partner", "Volunteer"]

    def test_mapping_for(self, resolver):
        """Should look up a mapping case-insensitively."""
        assert resolver.mapping_for(OREGON_VOLUNTEER_GROUP.upper()).role == "Volunteer"
        assert resolver.mapping_for("nope") is None
