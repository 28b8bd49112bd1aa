"""Socket bridge manager port definition."""

from __future__ import annotations

from typing import Protocol


class SocketBridgeManager(Protocol):
    """Lifecycle of per-container socket bridge daemons."""

    def ensure_bridge(self, container_id: str, gpg_enabled: bool) -> None:
        """Ensure a bridge daemon runs for the container; idempotent."""

    def stop_bridge(self, container_id: str) -> None:
        """Stop the bridge daemon of a container."""

    def stop_all(self) -> None:
        """Stop every known bridge daemon."""

    def is_running(self, container_id: str) -> bool:
        """Return True if a bridge daemon runs for the container."""
