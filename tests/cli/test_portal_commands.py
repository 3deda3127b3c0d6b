"""Tests for the portal CLI."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from partner_portal.cli import app
from partner_portal.errors import LeadQueryError
from partner_portal.leads.models import Lead, PagedResult
from tests.conftest import (
    ARKANSAS_GUID,
    OREGON_BOTH_GROUP,
    OREGON_FOSTER_GROUP,
    SAMPLE_LEAD_ID,
    UNMAPPED_GUID,
)


@pytest.fixture
def mock_service():
    service = MagicMock()
    service.get_leads = AsyncMock(
        return_value=PagedResult[Lead](
            items=[Lead(id=SAMPLE_LEAD_ID, name="Smith Family", status="assigned", type="foster")],
            total_count=1,
        )
    )
    service.get_lead_by_id = AsyncMock(return_value=Lead(id=SAMPLE_LEAD_ID, name="Smith Family"))
    return service


@pytest.fixture
def mock_build(mock_service):
    """Patch service construction with a mock service and client context manager."""
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    with patch("partner_portal.api.build_lead_service", return_value=(mock_service, client)) as build:
        yield build


class TestInitiativesCommands:
    """Tests for 'portal initiatives'."""

    def test_list_defaults(self, cli_runner, portal_env):
        """Should list the built-in initiatives."""
        result = cli_runner.invoke(app, ["initiatives", "list"])

        assert result.exit_code == 0
        assert "Initiatives (5)" in result.output

    def test_list_json_from_env(self, cli_runner, portal_env):
        """Should list initiatives from PORTAL_INITIATIVES_JSON as JSON."""
        portal_env.setenv(
            "PORTAL_INITIATIVES_JSON",
            json.dumps({"initiatives": {"ec-arkansas": {"crmTenantGuid": ARKANSAS_GUID}}}),
        )

        result = cli_runner.invoke(app, ["initiatives", "list", "--json"])

        assert result.exit_code == 0
        assert ARKANSAS_GUID in result.output
        assert "ec-oregon" not in result.output

    def test_validate_defaults(self, cli_runner, portal_env):
        """Should pass validation for the built-in initiatives."""
        result = cli_runner.invoke(app, ["initiatives", "validate"])

        assert result.exit_code == 0
        assert "All enabled initiatives have valid CRM GUIDs" in result.output

    def test_validate_enabled_placeholder(self, cli_runner, portal_env):
        """Should exit 1 when an enabled initiative has a placeholder GUID."""
        portal_env.setenv(
            "PORTAL_INITIATIVES_JSON",
            json.dumps({"ec-x": {"crmTenantGuid": "00000000-0000-0000-0000-000000000002"}}),
        )

        result = cli_runner.invoke(app, ["initiatives", "validate"])

        assert result.exit_code == 1
        assert "placeholder" in result.output


class TestGroupsCommands:
    """Tests for 'portal groups resolve'."""

    def test_resolve(self, cli_runner, portal_env):
        """Should print the primary initiative and the merged roles."""
        result = cli_runner.invoke(app, ["groups", "resolve", OREGON_FOSTER_GROUP, OREGON_BOTH_GROUP])

        assert result.exit_code == 0
        assert "Primary initiative: ec-oregon" in result.output
        assert "Roles: Foster-Partner, Volunteer" in result.output

    def test_unmapped(self, cli_runner, portal_env):
        """Should flag unmapped groups and exit 1."""
        result = cli_runner.invoke(app, ["groups", "resolve", UNMAPPED_GUID])

        assert result.exit_code == 1
        assert "unmapped" in result.output
        assert "not assigned to any initiative group" in result.output


class TestLeadsCommands:
    """Tests for 'portal leads'."""

    def test_requires_d365(self, cli_runner, portal_env):
        """Should refuse to run without D365 settings."""
        result = cli_runner.invoke(app, ["leads", "list", "-i", "ec-oregon"])

        assert result.exit_code == 1
        assert "D365 is not configured" in result.output

    def test_list(self, cli_runner, d365_env, mock_build, mock_service):
        """Should build the security context and page from the options."""
        result = cli_runner.invoke(
            app,
            ["leads", "list", "-i", "ec-oregon", "--org-id", "org-1", "--org-type", "948010000",
             "-q", "smith", "--limit", "5"],
        )

        assert result.exit_code == 0
        assert "Leads (1 of 1)" in result.output
        ctx, filters, page = mock_service.get_leads.call_args.args
        assert ctx.initiative == "ec-oregon"
        assert ctx.organization_id == "org-1"
        assert ctx.user_id == "cli"
        assert filters.search == "smith"
        assert page.limit == 5

    def test_list_json(self, cli_runner, d365_env, mock_build):
        """Should print the page as camelCase JSON."""
        result = cli_runner.invoke(app, ["leads", "list", "-i", "ec-oregon", "--json"])

        assert result.exit_code == 0
        assert '"totalCount": 1' in result.output

    def test_get(self, cli_runner, d365_env, mock_build, mock_service):
        """Should fetch the lead by id."""
        result = cli_runner.invoke(app, ["leads", "get", SAMPLE_LEAD_ID, "-i", "ec-oregon"])

        assert result.exit_code == 0
        assert SAMPLE_LEAD_ID in result.output
        assert mock_service.get_lead_by_id.call_args.args[1] == SAMPLE_LEAD_ID

    def test_get_not_found(self, cli_runner, d365_env, mock_build, mock_service):
        """Should exit 1 when the lead is missing or hidden."""
        mock_service.get_lead_by_id.return_value = None

        result = cli_runner.invoke(app, ["leads", "get", SAMPLE_LEAD_ID, "-i", "ec-oregon"])

        assert result.exit_code == 1
        assert "Lead not found" in result.output

    def test_list_service_error(self, cli_runner, d365_env, mock_build, mock_service):
        """Should print the safe message and exit 1 when the CRM cannot be reached."""
        mock_service.get_leads.side_effect = LeadQueryError(
            "fetch leads: Token request failed: 401", 500,
            "Service configuration error. Please contact your administrator.", "D365_CONFIGURATION",
        )

        result = cli_runner.invoke(app, ["leads", "list", "-i", "ec-oregon"])

        assert result.exit_code == 1
        assert "Service configuration error" in result.output
        assert "401" not in result.output
