"""Mount specifications in Docker Engine API shape."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .core.constants import CONTAINER_GID, CONTAINER_UID

BIND = "bind"
VOLUME = "volume"
TMPFS = "tmpfs"


@dataclass(frozen=True)
class Mount:
    """One entry of HostConfig.Mounts."""

    type: str
    target: str
    source: str = ""
    read_only: bool = False

    def to_api(self) -> dict[str, Any]:
        data: dict[str, Any] = {"Type": self.type, "Target": self.target, "ReadOnly": self.read_only}
        if self.source:
            data["Source"] = self.source
        if self.type == TMPFS:
            data["TmpfsOptions"] = {
                "Mode": 0o755,
                "Options": [["uid", str(CONTAINER_UID)], ["gid", str(CONTAINER_GID)]],
            }
        return data


def bind_mount(source: str, target: str, read_only: bool = False) -> Mount:
    return Mount(type=BIND, source=source, target=target, read_only=read_only)


def volume_mount(name: str, target: str, read_only: bool = False) -> Mount:
    return Mount(type=VOLUME, source=name, target=target, read_only=read_only)


def tmpfs_mount(target: str) -> Mount:
    return Mount(type=TMPFS, target=target)
