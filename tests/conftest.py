"""Shared test fixtures for the partner portal test suite."""

from __future__ import annotations

import os
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio
from typer.testing import CliRunner

from partner_portal.audit import AuditLogger, InMemoryAuditSink
from partner_portal.context import SecurityContext
from partner_portal.d365 import D365Client, RetryPolicy, StaticTokenProvider
from partner_portal.tenancy import (
    DEFAULT_GROUP_MAPPINGS,
    Initiative,
    InitiativeRegistry,
    TenantBoundaryResolver,
)

# Sample IDs used across tests
OREGON_GUID = "b6ced3de-2993-ed11-aad1-6045bd006a3a"
ARKANSAS_GUID = "3f2a9c10-4b7e-ee11-8179-000d3a5c2b11"
UNMAPPED_GUID = "9e9e9e9e-1111-2222-3333-444455556666"

OREGON_ALL_USERS_GROUP = "e6ae3a86-446e-40f0-a2fb-e1b83f11cd3b"
OREGON_FOSTER_GROUP = "b25d4508-8b32-4e7f-bc90-d2699adb12a7"
OREGON_VOLUNTEER_GROUP = "f24c7dc3-3844-4037-90b8-c73c59b0ea30"
OREGON_BOTH_GROUP = "6d252fee-1df8-4ba1-acf1-18c1c704f3bd"
KENTUCKY_ALL_USERS_GROUP = "61f913cc-0360-482d-8373-7a7cac826eb2"

SAMPLE_ORG_ID = "a1b2c3d4-0000-4000-8000-00000000abcd"
SAMPLE_LEAD_ID = "c0ffee00-1234-4abc-9def-0123456789ab"
SAMPLE_USER_ID = "user-123"

D365_URL = "https://contoso.crm.dynamics.com"
API_ROOT = f"{D365_URL}/api/data/v9.2/"


# ============================================================================
# Mock Response Data
# ============================================================================


def make_lead_record(**overrides: Any) -> dict[str, Any]:
    record = {
        "tc_everychildleadid": SAMPLE_LEAD_ID,
        "tc_name": "Smith Family",
        "tc_ecleadlifecyclestatus": 948010001,
        "tc_engagementinterest": "948010000",
        "tc_leadscore2": 72.5,
        "createdon": "2024-01-15T10:00:00Z",
        "modifiedon": "2024-02-01T08:30:00Z",
        "_tc_initiative_value": OREGON_GUID,
        "_tc_fosterorganization_value": SAMPLE_ORG_ID,
        "tc_Contact": {"fullname": "Jane Smith", "emailaddress1": "jane@example.com"},
        "tc_LeadOwner": {"fullname": "Case Worker"},
    }
    record.update(overrides)
    return record


MOCK_D365_ERROR = {
    "error": {
        "code": "0x80040265",
        "message": "Business rule failed for record 11111111-2222-3333-4444-555555555555",
        "innererror": {
            "message": "Plugin threw",
            "type": "System.ServiceModel.FaultException",
            "stacktrace": "at Plugin.Execute()",
        },
    }
}


# ============================================================================
# Tenancy Fixtures
# ============================================================================


@pytest.fixture
def registry():
    """Oregon and Arkansas enabled with real GUIDs, Kentucky still a placeholder."""
    return InitiativeRegistry([
        Initiative("ec-oregon", OREGON_GUID, "Oregon"),
        Initiative("ec-arkansas", ARKANSAS_GUID, "Arkansas"),
        Initiative("ec-kentucky", "00000000-0000-0000-0000-000000000001", "Kentucky", False),
    ])


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def audit(audit_sink):
    return AuditLogger(sinks=[audit_sink], console_enabled=False)


@pytest.fixture
def resolver(registry, audit):
    return TenantBoundaryResolver(registry, DEFAULT_GROUP_MAPPINGS, audit)


@pytest.fixture
def ctx():
    """Foster-partner user in Oregon."""
    return SecurityContext(
        initiative="ec-oregon",
        organization_id=SAMPLE_ORG_ID,
        organization_lead_type="948010000",
        user_id=SAMPLE_USER_ID,
        organization_name="Hope Foster Agency",
    )


# ============================================================================
# D365 Fixtures
# ============================================================================


@pytest.fixture
def fast_policy():
    """Retry policy with no jitter and millisecond delays."""
    return RetryPolicy(max_retries=3, initial_delay=0.001, max_delay=0.01, jitter=False)


@pytest.fixture
def requests_seen():
    """Requests captured by ``make_d365_client`` transports."""
    return []


@pytest_asyncio.fixture
async def make_d365_client(audit, fast_policy, requests_seen):
    """Factory for a ``D365Client`` backed by an ``httpx.MockTransport``.

    The handler receives each ``httpx.Request`` and returns an ``httpx.Response``.
    """
    clients: list[D365Client] = []

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        token: str | None = "test-token",
        policy: RetryPolicy | None = None,
    ) -> D365Client:
        def _record(request: httpx.Request) -> httpx.Response:
            requests_seen.append(request)
            return handler(request)

        client = D365Client(
            D365_URL,
            StaticTokenProvider(token),
            policy=policy or fast_policy,
            audit=audit,
            transport=httpx.MockTransport(_record),
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.close()


# ============================================================================
# CLI Fixtures
# ============================================================================


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def portal_env(monkeypatch, tmp_path):
    """Clear PORTAL_* variables and run from an empty directory (no .env)."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("PORTAL_"):
            monkeypatch.delenv(key)
    return monkeypatch


@pytest.fixture
def d365_env(portal_env):
    """Environment with D365 fully configured."""
    portal_env.setenv("PORTAL_D365_URL", D365_URL)
    portal_env.setenv("PORTAL_AZURE_TENANT_ID", "tenant-1")
    portal_env.setenv("PORTAL_D365_CLIENT_ID", "client-1")
    portal_env.setenv("PORTAL_D365_CLIENT_SECRET", "s3cret")
    return portal_env
