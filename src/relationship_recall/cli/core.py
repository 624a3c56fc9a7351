"""Shared typer app, console and service wiring for the recall commands."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from ..config import load_settings
from ..db import init_db
from ..logger import configure_logging
from ..service import RecallService

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings YAML to load"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines"),
) -> None:
    """Relationship recall - resolve people mentions and search interaction notes."""
    configure_logging(level=log_level, json_output=json_logs)
    ctx.ensure_object(dict)["config"] = config


def get_config_path(ctx: typer.Context) -> Optional[str]:
    """Config path given to the top-level callback, if any."""
    if not isinstance(ctx.obj, dict):
        return None
    return ctx.obj.get("config")


def get_service(ctx: typer.Context) -> RecallService:
    return RecallService(load_settings(get_config_path(ctx)))


def parse_social(value: Optional[str]) -> Optional[tuple[str, str]]:
    """Parse ``platform:handle``."""
    if not value:
        return None
    platform, sep, handle = value.partition(":")
    if not sep or not platform.strip() or not handle.strip():
        raise typer.BadParameter("expected PLATFORM:HANDLE, e.g. twitter:@mikey")
    return platform.strip(), handle.strip()


@app.command("init-db")
def init_db_command(ctx: typer.Context) -> None:
    """Create the database schema."""
    s = load_settings(get_config_path(ctx))
    init_db(s.app.database_path)
    console.print(f"[green]Database ready at {s.app.database_path}[/green]")
