"""Define centralized enum values shared across config, pipeline and display.

Inherit from str so members compare equal to their YAML/JSON spellings and
serialize without .value.

Usage:
    from clawker.kinds import WorkspaceMode

    if mode is WorkspaceMode.SNAPSHOT:
        ...
"""

from enum import Enum


class WorkspaceMode(str, Enum):
    """How the host workspace reaches the container."""

    BIND = "bind"  # Live host bind mount
    SNAPSHOT = "snapshot"  # Isolated copy in a managed volume


class ClaudeStrategy(str, Enum):
    """How the config volume is seeded on first boot."""

    COPY = "copy"  # Copy host ~/.claude subset
    FRESH = "fresh"  # Start empty


class VolumeKind(str, Enum):
    """Purpose suffix of a per-agent managed volume."""

    CONFIG = "config"
    WORKSPACE = "workspace"


class StepStatus(str, Enum):
    """Progress step states, in display order."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    CACHED = "cached"
    ERROR = "error"


class ImageSource(str, Enum):
    """Where a resolved image reference came from."""

    EXPLICIT = "explicit"  # Named on the command line
    PROJECT = "project"  # Found via project label search
    DEFAULT = "default"  # default_image from config or settings


class SocketType(str, Enum):
    """Host agent sockets the bridge can forward."""

    GPG_AGENT = "gpg-agent"
    SSH_AGENT = "ssh-agent"
