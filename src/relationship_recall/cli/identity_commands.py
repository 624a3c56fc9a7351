"""CLI commands for identity resolution and merges."""

from __future__ import annotations

from typing import List, Optional

import typer
from rich.table import Table

from ..errors import RecallError
from ..identity_resolution import MatchOutcome
from .core import app, console, get_service, parse_social


@app.command("resolve")
def resolve(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name as written in the note, e.g. \"Michael 'Mikey' Anderson\""),
    org: Optional[str] = typer.Option(None, "--org", help="Organization mentioned alongside the name"),
    title: Optional[str] = typer.Option(None, "--title", help="Role title at --org"),
    social: Optional[str] = typer.Option(None, "--social", help="PLATFORM:HANDLE"),
    context: Optional[str] = typer.Option(None, "--context", help="Surrounding note text"),
) -> None:
    """Match a mention to an existing person or create a new one."""
    service = get_service(ctx)
    try:
        decision = service.resolve_mention(name, org, parse_social(social), context, title)
    except RecallError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        service.close()

    if decision.outcome is MatchOutcome.NO_MATCH:
        console.print(f"[green]Created new person {decision.person_id}[/green]")
    elif decision.outcome is MatchOutcome.MATCHED:
        console.print(f"[green]Matched {decision.person_id} (score {decision.best_score:.2f})[/green]")
    else:
        console.print("[yellow]Ambiguous: confirm one candidate, or merge duplicates[/yellow]")

    if decision.candidates:
        table = Table(title="Candidates")
        table.add_column("Person", style="cyan", no_wrap=True)
        table.add_column("Score", justify="right")
        table.add_column("Signals", style="dim")
        for c in decision.candidates:
            table.add_row(c.person_id, f"{c.score:.2f}", ", ".join(sorted(c.signals)))
        console.print(table)


@app.command("merge")
def merge(
    ctx: typer.Context,
    survivor_id: str = typer.Argument(..., help="Person to keep"),
    absorbed_ids: List[str] = typer.Argument(..., help="Persons to fold into the survivor"),
) -> None:
    """Merge duplicate persons into one."""
    service = get_service(ctx)
    try:
        result = service.merge_persons(survivor_id, absorbed_ids)
    except RecallError as e:
        console.print(f"[red]Merge failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        service.close()
    console.print(
        f"[green]Merged {len(result.absorbed_ids)} person(s) into {survivor_id}[/green] "
        f"(roles {result.roles_moved}, handles {result.handles_moved}, interactions {result.interactions_moved})"
    )
    if result.skipped_ids:
        console.print(f"[dim]Already absorbed: {', '.join(result.skipped_ids)}[/dim]")


@app.command("merge-history")
def merge_history(
    ctx: typer.Context,
    person_id: Optional[str] = typer.Option(None, "--person", help="Only merges involving this person"),
    limit: int = typer.Option(20, "--limit", help="Max rows"),
) -> None:
    """Show recorded merges, newest first."""
    service = get_service(ctx)
    rows = service.list_merge_history(person_id, limit)
    service.close()
    if not rows:
        console.print("No merges recorded")
        return
    table = Table(title="Merge History")
    table.add_column("When", style="yellow")
    table.add_column("Survivor", style="cyan")
    table.add_column("Absorbed", style="magenta")
    table.add_column("Name")
    table.add_column("Roles/Handles/Interactions", justify="right")
    for r in rows:
        table.add_row(
            r["created_at"],
            r["survivor_id"],
            r["absorbed_id"],
            r["absorbed_name"] or "-",
            f"{r['roles_moved']}/{r['handles_moved']}/{r['interactions_moved']}",
        )
    console.print(table)


@app.command("persons")
def persons(ctx: typer.Context) -> None:
    """List people with their current organizations."""
    service = get_service(ctx)
    people = service.list_persons()
    service.close()
    table = Table(title=f"People ({len(people)})")
    table.add_column("Id", style="dim", no_wrap=True)
    table.add_column("Name", style="cyan")
    table.add_column("Nicknames")
    table.add_column("Current", style="green")
    for p in people:
        table.add_row(
            p.id,
            p.name,
            ", ".join(sorted(p.nicknames)) or "-",
            ", ".join(f"{r.title} @ {r.organization_name}" for r in p.current_roles) or "-",
        )
    console.print(table)


@app.command("delete-person")
def delete_person(
    ctx: typer.Context,
    person_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a person together with their roles, handles and interactions."""
    if not yes:
        typer.confirm(f"Delete {person_id} and all of their interactions?", abort=True)
    service = get_service(ctx)
    try:
        counts = service.delete_person(person_id)
    except RecallError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        service.close()
    console.print(f"[green]Deleted {person_id}[/green] {counts}")
