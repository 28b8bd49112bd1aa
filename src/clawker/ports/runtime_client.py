"""Container runtime client port definition."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

# Stream ids used by the daemon's multiplexed attach framing
STDOUT = 1
STDERR = 2


@dataclass(frozen=True)
class VolumeInfo:
    """A volume as reported by the daemon."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ContainerCreateRequest:
    """The three request sub-objects plus the container name.

    Args:
        name: Container name.
        config: Container config (Image, Cmd, Env, Labels, ...).
        host_config: Host config (Mounts, PortBindings, RestartPolicy, ...).
        networking_config: Endpoint settings keyed by network name.
    """

    name: str
    config: dict[str, Any]
    host_config: dict[str, Any]
    networking_config: dict[str, Any]


@dataclass(frozen=True)
class ContainerCreateResponse:
    """Result of a container create call."""

    id: str
    warnings: list[str] = field(default_factory=list)


class HijackedConnection(Protocol):
    """Bidirectional attach stream opened before the container starts."""

    def read_frames(self) -> Iterator[tuple[int, bytes]]:
        """Yield (stream id, chunk) until the stream ends.

        TTY streams are raw and always report STDOUT.
        """

    def send(self, data: bytes) -> None:
        """Write caller stdin bytes to the container."""

    def close_write(self) -> None:
        """Half-close the write side so the container sees EOF on stdin."""

    def close(self) -> None:
        """Close the connection, unblocking any reader."""


class RuntimeClient(Protocol):
    """Container runtime operations consumed by the initialization pipeline."""

    def ping(self) -> None:
        """Ensure the daemon is reachable."""

    def volume_inspect(self, name: str) -> VolumeInfo | None:
        """Return the volume, or None if it does not exist."""

    def volume_create(self, name: str, labels: dict[str, str]) -> VolumeInfo:
        """Create a volume (idempotent on the daemon side) and return it."""

    def volume_remove(self, name: str) -> None:
        """Remove a volume."""

    def copy_to_volume(self, volume_name: str, src_dir: Path, dest_path: str) -> None:
        """Copy the contents of src_dir into the volume mounted at dest_path."""

    def container_create(self, request: ContainerCreateRequest) -> ContainerCreateResponse:
        """Create a container."""

    def container_attach(self, container_id: str, *, stdin: bool, tty: bool) -> HijackedConnection:
        """Open a hijacked attach stream."""

    def container_start(self, container_id: str) -> None:
        """Start a created container."""

    def container_wait(self, container_id: str, *, condition: str = "next-exit") -> int:
        """Block until the container reaches condition and return its exit status.

        Conditions follow the daemon: "next-exit" or "removed".
        """

    def container_resize(self, container_id: str, rows: int, cols: int) -> None:
        """Resize the container TTY."""

    def container_remove(self, container_id: str, *, force: bool = False) -> None:
        """Remove a container."""

    def copy_to_container(self, container_id: str, dest_path: str, archive: bytes) -> None:
        """Extract a tar archive into the container at dest_path."""

    def ensure_network(self, name: str) -> None:
        """Create the named bridge network if it does not exist."""

    def image_exists(self, reference: str) -> bool:
        """Return True if the image exists locally."""

    def find_project_image(self, project: str) -> str | None:
        """Return the :latest tag of a managed image labelled with the project."""
