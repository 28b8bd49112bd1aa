#!/usr/bin/env python3
"""
clawker - agent containers on Docker

This module is the thin orchestrator that composes commands from:
- commands/container: run and create
- commands/bridge: the hidden socket bridge daemon
"""

import typer
from rich.panel import Panel

from . import __version__
from .cli_common import console, state
from .commands.bridge.app import bridge_app
from .commands.container.app import container_app, register
from .core.logging import setup_logging

# ─────────────────────────────────────────────────────────────────────────────
# App Configuration
# ─────────────────────────────────────────────────────────────────────────────

app = typer.Typer(
    name="clawker",
    help="Provision and launch Claude agent containers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ─────────────────────────────────────────────────────────────────────────────
# Global Callback (--debug flag)
# ─────────────────────────────────────────────────────────────────────────────


@app.callback(invoke_without_command=True)
def main_callback(
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Show detailed error information for troubleshooting.",
        is_eager=True,
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        is_eager=True,
    ),
) -> None:
    """
    [bold cyan]clawker[/bold cyan] - agent containers on Docker
    """
    state.debug = debug
    setup_logging(debug=debug)

    if version:
        console.print(
            Panel(
                f"[cyan]clawker[/cyan] [dim]v{__version__}[/dim]",
                border_style="cyan",
            )
        )
        raise typer.Exit()


# ─────────────────────────────────────────────────────────────────────────────
# Register Commands from Domain Modules
# ─────────────────────────────────────────────────────────────────────────────

app.add_typer(container_app, name="container")

# Top-level aliases: clawker run / clawker create
register(app)

app.add_typer(bridge_app, name="bridge", hidden=True)


# ─────────────────────────────────────────────────────────────────────────────
# Entry Point
# ─────────────────────────────────────────────────────────────────────────────


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
