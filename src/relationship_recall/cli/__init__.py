"""CLI commands for relationship recall."""

# These imports register CLI commands with the app via decorators
from . import identity_commands, search_commands  # noqa: F401
from .core import app


def main() -> None:
    """Console entry point for the recall CLI."""
    app()


__all__ = ["app", "main"]
