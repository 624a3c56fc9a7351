"""CLI commands for interactions, search and analytics."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import typer
from rich.table import Table

from ..errors import RecallError
from .core import app, console, get_service


@app.command("add-interaction")
def add_interaction(
    ctx: typer.Context,
    person_id: str = typer.Argument(..., help="Person the interaction is with"),
    summary: str = typer.Argument(..., help="Short summary"),
    full_text: Optional[str] = typer.Option(None, "--text", help="Full note text"),
    location: Optional[str] = typer.Option(None, "--location"),
    date: Optional[datetime] = typer.Option(None, "--date", help="When it happened (ISO format)"),
) -> None:
    """Record an interaction and embed it (queued if the model is unavailable)."""
    service = get_service(ctx)
    try:
        interaction = service.add_interaction(person_id, summary, date, full_text, location)
    except RecallError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        service.close()
    console.print(f"[green]Recorded interaction {interaction.id}[/green]")


def _print_results(service, results, title: str) -> None:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Date", style="yellow")
    table.add_column("Snippet")
    table.add_column("Dupes", justify="right", style="dim")
    for r in results:
        interaction = service.get_interaction(r.interaction_id)
        table.add_row(
            str(r.cluster_id + 1),
            f"{r.score:.3f}",
            interaction.date.strftime("%Y-%m-%d"),
            interaction.snippet or interaction.summary,
            str(max(len(r.member_ids) - 1, 0)),
        )
    console.print(table)


@app.command("search")
def search(
    ctx: typer.Context,
    query: str = typer.Argument(...),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
    hybrid: bool = typer.Option(False, "--hybrid", help="Blend semantic and keyword scores"),
) -> None:
    """Search interaction notes in natural language."""
    service = get_service(ctx)
    try:
        response = service.hybrid_search(query, limit) if hybrid else service.search_detailed(query, limit)
        if not response.results:
            console.print("No matching interactions")
        else:
            _print_results(service, response.results, f"Results for {query!r}")
    except RecallError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        service.close()
    flags = []
    if response.from_cache:
        flags.append("cached")
    if response.degraded:
        flags.append("keyword fallback")
    console.print(f"[dim]{response.latency_ms:.1f} ms {' '.join(flags)}[/dim]")


@app.command("ask")
def ask(
    ctx: typer.Context,
    question: str = typer.Argument(..., help='e.g. "who do I know at Acme and talked about pricing?"'),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
) -> None:
    """Answer a question from people and interaction notes together."""
    service = get_service(ctx)
    try:
        response = service.unified_search(question, limit)
        analysis = response.analysis
        console.print(
            f"[dim]{analysis.intent.value} / {analysis.strategy.value} "
            f"({analysis.confidence:.2f}): {analysis.rewritten}[/dim]"
        )
        if not response.results:
            console.print("Nothing found")
            return
        table = Table(title=f"Answers for {question!r}")
        table.add_column("Score", justify="right", style="green")
        table.add_column("Kind")
        table.add_column("Source", style="dim")
        table.add_column("Detail")
        for r in response.results:
            if r.kind == "person":
                person = service.get_person(r.id)
                roles = ", ".join(f"{role.title} @ {role.organization_name}" for role in person.current_roles)
                detail = f"{person.name} ({roles})" if roles else person.name
            else:
                interaction = service.get_interaction(r.id)
                detail = f"{interaction.date:%Y-%m-%d} {interaction.snippet or interaction.summary}"
            table.add_row(f"{r.score:.3f}", r.kind, r.source, detail)
        console.print(table)
        if response.degraded:
            console.print("[dim]keyword fallback[/dim]")
    except RecallError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        service.close()


@app.command("similar")
def similar(
    ctx: typer.Context,
    interaction_id: str = typer.Argument(...),
    limit: int = typer.Option(5, "--limit", "-n"),
) -> None:
    """Show interactions similar to the given one."""
    service = get_service(ctx)
    try:
        neighbors = service.find_similar_interactions(interaction_id, limit)
        if not neighbors:
            console.print("No similar interactions")
            return
        table = Table(title="Similar interactions")
        table.add_column("Interaction", style="dim", no_wrap=True)
        table.add_column("Similarity", justify="right", style="green")
        table.add_column("Summary")
        for n in neighbors:
            table.add_row(n.interaction_id, f"{n.score:.3f}", service.get_interaction(n.interaction_id).summary)
        console.print(table)
    except RecallError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        service.close()


@app.command("embed-retry")
def embed_retry(
    ctx: typer.Context,
    limit: int = typer.Option(50, "--limit", help="Max queued interactions to retry"),
) -> None:
    """Retry embeddings that were queued while the model was unavailable."""
    service = get_service(ctx)
    try:
        stats = service.process_embedding_queue(limit)
    finally:
        service.close()
    console.print(
        f"Processed {stats['processed']}: [green]{stats['succeeded']} stored[/green], "
        f"[red]{stats['failed']} failed[/red]"
    )


@app.command("analytics")
def analytics(
    ctx: typer.Context,
    hours: int = typer.Option(24, "--hours", help="Time window in hours"),
    format: str = typer.Option("table", "--format", help="Output format: table, json"),
) -> None:
    """Summarize recorded searches."""
    service = get_service(ctx)
    stats = service.get_search_stats(hours)
    service.close()
    if format == "json":
        console.print_json(data=stats)
        return
    table = Table(title=f"Search analytics (last {hours}h)")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Searches", str(stats["total_searches"]))
    table.add_row("Cache hit rate", f"{stats['cache_hit_rate'] * 100:.1f}%")
    table.add_row("Avg latency", f"{stats['avg_latency_ms']:.1f} ms")
    table.add_row("p95 latency", f"{stats['p95_latency_ms']:.1f} ms")
    table.add_row("Zero-result rate", f"{stats['zero_result_rate'] * 100:.1f}%")
    table.add_row("Degraded rate", f"{stats['degraded_rate'] * 100:.1f}%")
    console.print(table)
