"""Partner portal operator CLI."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from .config import configure_logging, get_settings
from .context import SecurityContext
from .errors import PortalError
from .leads.models import LeadFilters, PageOptions
from .tenancy import TenantBoundaryResolver

app = typer.Typer(
    name="portal",
    help="Partner portal data-access tools",
    no_args_is_help=True,
)
console = Console()

initiatives_app = typer.Typer(help="Initiative configuration")
groups_app = typer.Typer(help="Identity-provider group mappings")
leads_app = typer.Typer(help="Query leads as a partner user would")

app.add_typer(initiatives_app, name="initiatives")
app.add_typer(groups_app, name="groups")
app.add_typer(leads_app, name="leads")


def _output_json(result: Any) -> None:
    console.print_json(json.dumps(result, default=str))


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    configure_logging("DEBUG" if verbose else get_settings().log_level)


# ============================================================================
# Initiatives
# ============================================================================


@initiatives_app.command("list")
def initiatives_list(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show the configured initiatives."""
    registry = get_settings().load_initiatives()

    if json_output:
        _output_json(registry.to_table())
        return

    table = Table(title=f"Initiatives ({len(registry)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("CRM GUID", style="dim")
    table.add_column("Enabled", style="green")
    table.add_column("Issues", style="yellow")
    for initiative in registry:
        table.add_row(
            initiative.id,
            initiative.display_name,
            initiative.crm_tenant_guid,
            "yes" if initiative.enabled else "no",
            "; ".join(initiative.issues()) or "-",
        )
    console.print(table)


@initiatives_app.command("validate")
def initiatives_validate():
    """Exit 1 if an enabled initiative has a missing, placeholder or malformed GUID."""
    registry = get_settings().load_initiatives()
    problems = registry.validate(enabled_only=True)
    disabled = [i for i in registry if not i.enabled and i.issues()]

    for initiative in disabled:
        console.print(f"[dim]Disabled: {'; '.join(initiative.issues())}[/dim]")
    if problems:
        for problem in problems:
            console.print(f"[red]✗[/red] {problem}")
        raise typer.Exit(1)
    console.print("[green]✓[/green] All enabled initiatives have valid CRM GUIDs")


# ============================================================================
# Groups
# ============================================================================


@groups_app.command("resolve")
def groups_resolve(
    group_ids: list[str] = typer.Argument(..., help="Group object IDs from the token"),
):
    """Show which initiative (and roles) a set of groups resolves to."""
    settings = get_settings()
    resolver = TenantBoundaryResolver(settings.load_initiatives(), settings.load_group_mappings())

    table = Table(title="Group mappings")
    table.add_column("Group ID", style="dim")
    table.add_column("Initiative", style="cyan")
    table.add_column("Type", style="white")
    table.add_column("Role", style="yellow")
    for group_id in group_ids:
        mapping = resolver.mapping_for(group_id)
        if mapping is None:
            table.add_row(group_id, "[red]unmapped[/red]", "-", "-")
        else:
            table.add_row(group_id, mapping.initiative_id, mapping.group_type.value, mapping.role or "-")
    console.print(table)

    try:
        primary, additional = resolver.resolve_primary(group_ids)
    except PortalError as e:
        console.print(f"[red]✗[/red] {e.user_message}")
        raise typer.Exit(1)

    console.print(f"Primary initiative: [cyan]{primary}[/cyan]")
    if additional:
        console.print(f"Additional: {', '.join(additional)}")
    roles = resolver.extract_roles(group_ids)
    console.print(f"Roles: {', '.join(roles) if roles else '-'}")


# ============================================================================
# Leads
# ============================================================================


def _context(initiative: str, org_id: str | None, org_type: str | None, user: str | None):
    return SecurityContext(
        initiative=initiative,
        organization_id=org_id,
        organization_lead_type=org_type,
        user_id=user or "cli",
    )


def _require_d365(settings) -> None:
    if not settings.d365_configured:
        console.print(
            "[red]✗[/red] D365 is not configured. Set PORTAL_D365_URL, PORTAL_AZURE_TENANT_ID, "
            "PORTAL_D365_CLIENT_ID and PORTAL_D365_CLIENT_SECRET."
        )
        raise typer.Exit(1)


@leads_app.command("list")
def leads_list(
    initiative: str = typer.Option(..., "--initiative", "-i", help="Initiative id, e.g. ec-oregon"),
    org_id: str = typer.Option(None, "--org-id", help="Organization (account) id"),
    org_type: str = typer.Option(None, "--org-type", help="Organization lead types, e.g. 948010000"),
    user: str = typer.Option(None, "--user", help="User id recorded in audit events"),
    search: str = typer.Option(None, "--search", "-q", help="Search lead names"),
    limit: int = typer.Option(25, "--limit", "-l", help="Page size"),
    page_token: str = typer.Option(None, "--page-token", help="Continuation token"),
    order_by: str = typer.Option(None, "--order-by", help="Sort field"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List leads visible to an initiative/organization."""
    from .api import build_lead_service

    settings = get_settings()
    _require_d365(settings)

    async def _list():
        service, client = build_lead_service(settings)
        async with client:
            return await service.get_leads(
                _context(initiative, org_id, org_type, user),
                LeadFilters(search=search),
                PageOptions(limit=limit, page_token=page_token, order_by=order_by),
            )

    try:
        result = asyncio.run(_list())
    except PortalError as e:
        console.print(f"[red]✗[/red] {e.user_message}")
        raise typer.Exit(1)

    if json_output:
        _output_json(result.model_dump(by_alias=True, mode="json"))
        return

    table = Table(title=f"Leads ({len(result.items)} of {result.total_count})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Status", style="white")
    table.add_column("Type", style="green")
    table.add_column("Subject", style="white")
    table.add_column("Updated", style="dim")
    for lead in result.items:
        table.add_row(
            lead.id,
            lead.name or "-",
            lead.status,
            lead.type,
            lead.subject_name or "-",
            lead.updated_at.isoformat() if lead.updated_at else "-",
        )
    console.print(table)
    if result.next_page_token:
        console.print(f"Next page: --page-token {result.next_page_token}")


@leads_app.command("get")
def leads_get(
    lead_id: str = typer.Argument(..., help="Lead GUID"),
    initiative: str = typer.Option(..., "--initiative", "-i", help="Initiative id"),
    org_id: str = typer.Option(None, "--org-id", help="Organization (account) id"),
    org_type: str = typer.Option(None, "--org-type", help="Organization lead types"),
    user: str = typer.Option(None, "--user", help="User id recorded in audit events"),
):
    """Fetch one lead, verifying it belongs to the initiative."""
    from .api import build_lead_service

    settings = get_settings()
    _require_d365(settings)

    async def _get():
        service, client = build_lead_service(settings)
        async with client:
            return await service.get_lead_by_id(_context(initiative, org_id, org_type, user), lead_id)

    try:
        lead = asyncio.run(_get())
    except PortalError as e:
        console.print(f"[red]✗[/red] {e.user_message}")
        raise typer.Exit(1)

    if lead is None:
        console.print("[yellow]Lead not found[/yellow]")
        raise typer.Exit(1)
    _output_json(lead.model_dump(by_alias=True, mode="json"))


if __name__ == "__main__":
    app()
