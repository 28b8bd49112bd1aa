"""Progress display port definition."""

from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import Protocol

from clawker.kinds import StepStatus


@dataclass(frozen=True)
class ProgressStep:
    """One progress event.

    Step ids are stable across runs; names may carry run-specific detail.
    """

    id: str
    name: str
    status: StepStatus
    error: str | None = None
    log_line: str | None = None

    @property
    def cached(self) -> bool:
        return self.status is StepStatus.CACHED


class ProgressDisplay(Protocol):
    """Renders step events produced on another thread."""

    def run(self, title: str, subtitle: str, events: queue.Queue[ProgressStep | None]) -> None:
        """Consume events until a None sentinel arrives."""
