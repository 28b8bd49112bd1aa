"""Output helpers for container commands."""

from __future__ import annotations

from rich.console import Console

from ...cli_common import console as default_console

SHORT_ID_LENGTH = 12


def render_container_id(container_id: str, *, short: bool, console: Console | None = None) -> None:
    """Print a container ID on stdout, plain so scripts can capture it."""
    out = console or default_console
    out.print(container_id[:SHORT_ID_LENGTH] if short else container_id, highlight=False, soft_wrap=True)


def rebuild_prompt(message: str) -> str:
    return f"[yellow]{message}[/yellow]"
