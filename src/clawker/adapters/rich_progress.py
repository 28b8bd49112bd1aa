"""Rich Live adapter for the ProgressDisplay port."""

from __future__ import annotations

import queue

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text

from clawker.kinds import StepStatus
from clawker.ports.progress import ProgressDisplay, ProgressStep

_ICONS = {
    StepStatus.PENDING: ("○", "dim"),
    StepStatus.COMPLETE: ("✓", "green"),
    StepStatus.CACHED: ("✓", "cyan"),
    StepStatus.ERROR: ("✗", "red"),
}
_MAX_LOG_LINES = 3


class RichProgressDisplay(ProgressDisplay):
    """Step list with a spinner on the running step, drawn to stderr."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)

    def run(self, title: str, subtitle: str, events: queue.Queue[ProgressStep | None]) -> None:
        steps: dict[str, ProgressStep] = {}
        logs: list[str] = []

        with Live(
            self._render(title, subtitle, steps, logs),
            console=self._console,
            refresh_per_second=8,
            transient=False,
        ) as live:
            while True:
                event = events.get()
                if event is None:
                    break
                steps[event.id] = event
                if event.log_line:
                    logs.append(event.log_line)
                    del logs[:-_MAX_LOG_LINES]
                live.update(self._render(title, subtitle, steps, logs))

    def _render(
        self,
        title: str,
        subtitle: str,
        steps: dict[str, ProgressStep],
        logs: list[str],
    ) -> RenderableType:
        table = Table.grid(padding=(0, 1))
        table.add_column(width=2)
        table.add_column()
        for step in steps.values():
            if step.status is StepStatus.RUNNING:
                icon: RenderableType = Spinner("dots", style="cyan")
            else:
                glyph, style = _ICONS[step.status]
                icon = Text(glyph, style=style)
            label = Text(step.name)
            if step.cached:
                label.append(" (cached)", style="dim")
            if step.error:
                label.append(f"  {step.error}", style="red")
            table.add_row(icon, label)

        body: list[RenderableType] = [table]
        if logs:
            body.append(Text("\n".join(logs), style="dim"))
        return Panel(
            Group(*body),
            title=f"[bold cyan]{title}[/bold cyan]",
            subtitle=f"[dim]{subtitle}[/dim]",
            border_style="cyan",
            expand=False,
        )
