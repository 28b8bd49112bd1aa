"""
CLI Common Utilities.

Shared consoles, global flag state and the error boundary used by every
command module.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any, TypeVar, cast

import typer
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from .core.errors import ClawkerError, ContainerExitError
from .core.exit_codes import EXIT_CANCELLED, get_exit_code_for_exception

F = TypeVar("F", bound=Callable[..., Any])

# ─────────────────────────────────────────────────────────────────────────────
# Shared Console and State
# ─────────────────────────────────────────────────────────────────────────────

console = Console()
err_console = Console(stderr=True)


class AppState:
    """Global application state for CLI flags."""

    debug: bool = False


state = AppState()


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────


def print_warnings(warnings: Iterable[str]) -> None:
    """Print non-fatal incidents to stderr, one per line."""
    for warning in warnings:
        err_console.print(f"[yellow]{warning}[/yellow]", highlight=False)


def render_error(error: ClawkerError, *, debug: bool = False) -> None:
    """Render a ClawkerError as a panel on stderr."""
    body = Text(error.user_message)
    if error.suggested_action:
        body.append("\n\n")
        body.append(error.suggested_action, style="dim")
    if debug and error.debug_context:
        body.append(f"\n\n{error.debug_context}", style="dim italic")
    err_console.print(
        Panel(body, title="[bold red]Error[/bold red]", border_style="red", expand=False)
    )


# ─────────────────────────────────────────────────────────────────────────────
# Error Boundary Decorator
# ─────────────────────────────────────────────────────────────────────────────


def handle_errors(func: F) -> F:
    """Decorator to catch ClawkerError and render it on stderr."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ContainerExitError as e:
            # The container already printed whatever explains its status
            raise typer.Exit(e.exit_code)
        except ClawkerError as e:
            print_warnings(e.warnings)
            render_error(e, debug=state.debug)
            raise typer.Exit(e.exit_code)
        except KeyboardInterrupt:
            err_console.print("\n[dim]Operation cancelled.[/dim]")
            raise typer.Exit(EXIT_CANCELLED)
        except (typer.Exit, SystemExit):
            raise
        except Exception as e:
            if state.debug:
                err_console.print_exception()
            else:
                err_console.print(
                    Panel(
                        f"{e}\n\n[dim]Run with --debug for full traceback[/dim]",
                        title="[bold yellow]Unexpected Error[/bold yellow]",
                        border_style="yellow",
                        expand=False,
                    )
                )
            raise typer.Exit(get_exit_code_for_exception(e))

    return cast(F, wrapper)
