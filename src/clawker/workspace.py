"""
Workspace setup for agent containers.

Resolves the host directory the agent works on (optionally a git worktree),
computes the mount set for the workspace mode and ensures the per-agent
managed volumes exist. The caller learns which volumes this run created so
config seeding happens once per volume lifetime and rollback removes only
what this run made.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path

from . import config as clawker_config
from .config import GitCredentialsConfig, ProjectConfig
from .core.constants import (
    CONTAINER_CLAUDE_DIR,
    CONTAINER_GITCONFIG_PATH,
    DOCKER_SOCKET_PATH,
    LABEL_AGENT,
    LABEL_MANAGED,
    LABEL_PROJECT,
    LABEL_PURPOSE,
    MANAGED_LABEL_VALUE,
)
from .core.errors import ForeignVolumeError, ValidationError, WorktreeError
from .kinds import VolumeKind, WorkspaceMode
from .mounts import Mount, bind_mount, volume_mount
from .names import ResolvedNames, volume_name
from .ports.git_client import GitClient
from .ports.runtime_client import RuntimeClient

logger = logging.getLogger(__name__)

_SLUG_INVALID_RE = re.compile(r"[^a-z0-9-]+")
_SLUG_HYPHENS_RE = re.compile(r"-{2,}")
MAX_SLUG_LENGTH = 64


# ═══════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class WorktreeSpec:
    """Parsed --worktree value.

    Args:
        branch: Branch checked out in the worktree.
        base: Ref the branch is created from when it does not exist yet.
    """

    branch: str
    base: str | None = None


@dataclass(frozen=True)
class VolumeResult:
    """Outcome of ensuring one managed volume."""

    name: str
    freshly_created: bool


@dataclass
class WorkspaceResult:
    """Everything workspace setup produced.

    Invariants:
        - created_volumes lists only volumes this run brought into existence.
        - config_volume.freshly_created gates one-time config seeding.
    """

    mounts: list[Mount]
    workdir: Path
    mode: WorkspaceMode
    config_volume: VolumeResult
    created_volumes: list[str] = field(default_factory=list)


@dataclass
class GitCredentialSetup:
    """Mounts, env and forwarding decisions for host git credentials."""

    mounts: list[Mount] = field(default_factory=list)
    env: list[str] = field(default_factory=list)
    forward_ssh: bool = False
    forward_gpg: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# Worktrees
# ═══════════════════════════════════════════════════════════════════════════════


def parse_worktree_spec(value: str, agent: str) -> WorktreeSpec:
    """Parse ``branch[:base]``; an empty branch means the agent name.

    Raises:
        ValidationError: If the base is given but empty.
    """
    branch, sep, base = value.partition(":")
    branch = branch.strip() or agent
    if sep and not base.strip():
        raise ValidationError(
            user_message=f"invalid --worktree {value!r}: base branch after ':' cannot be empty",
            field="worktree",
        )
    return WorktreeSpec(branch=branch, base=base.strip() or None)


def slugify(name: str) -> str:
    """Return a filesystem-safe slug for a branch name."""
    slug = _SLUG_INVALID_RE.sub("-", name.strip().lower())
    slug = _SLUG_HYPHENS_RE.sub("-", slug).strip("-")
    if not slug:
        return "worktree"
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


def setup_worktree(git: GitClient, repo_root: Path, project: str, spec: WorktreeSpec) -> Path:
    """Materialize the worktree for spec and return its directory.

    A non-empty existing directory is reused as-is. A directory left behind
    by a failed creation is removed.

    Raises:
        WorktreeError: If repo_root is not a repository or git fails.
    """
    if not git.is_git_repo(repo_root):
        raise WorktreeError(
            user_message=f"cannot use --worktree: {repo_root} is not a git repository",
            suggested_action="Run clawker from inside a git repository or drop --worktree",
        )

    path = clawker_config.worktrees_dir(project) / slugify(spec.branch)
    if path.is_dir() and any(path.iterdir()):
        logger.debug("reusing worktree %s for branch %s", path, spec.branch)
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        if git.branch_exists(repo_root, spec.branch):
            git.add_worktree(repo_root, path, spec.branch, None)
        else:
            git.add_worktree(repo_root, path, spec.branch, spec.base)
    except Exception:
        shutil.rmtree(path, ignore_errors=True)
        raise

    logger.debug("created worktree %s for branch %s", path, spec.branch)
    return path


def worktree_git_mount(repo_root: Path) -> Mount:
    """Bind-mount the main repository's .git at the same absolute path.

    Worktrees reference the main .git by absolute path, with symlinks
    resolved the way git records them.

    Raises:
        WorktreeError: If .git is missing or is not a directory.
    """
    git_dir = repo_root.resolve() / ".git"
    if not git_dir.exists():
        raise WorktreeError(
            user_message=f"main repository .git not found at {git_dir} (required for worktree support)"
        )
    if not git_dir.is_dir():
        raise WorktreeError(
            user_message=f".git at {git_dir} is not a directory (expected main repository, got worktree)"
        )
    return bind_mount(str(git_dir), str(git_dir))


# ═══════════════════════════════════════════════════════════════════════════════
# Volumes
# ═══════════════════════════════════════════════════════════════════════════════


def volume_labels(names: ResolvedNames, kind: VolumeKind) -> dict[str, str]:
    labels = {LABEL_MANAGED: MANAGED_LABEL_VALUE}
    if names.project:
        labels[LABEL_PROJECT] = names.project
    labels[LABEL_AGENT] = names.agent
    labels[LABEL_PURPOSE] = kind.value
    return labels


def is_managed(labels: dict[str, str]) -> bool:
    return labels.get(LABEL_MANAGED) == MANAGED_LABEL_VALUE


def ensure_volume(runtime: RuntimeClient, name: str, labels: dict[str, str]) -> VolumeResult:
    """Ensure a managed volume exists.

    Concurrent runs for the same agent race only here. Creation is
    idempotent on the daemon, so a volume another run created in between
    comes back managed and is accepted.

    Raises:
        ForeignVolumeError: If the name is taken by an unmanaged volume.
    """
    existing = runtime.volume_inspect(name)
    if existing is not None:
        if not is_managed(existing.labels):
            raise ForeignVolumeError(volume_name=name)
        logger.debug("reusing managed volume %s", name)
        return VolumeResult(name=name, freshly_created=False)

    created = runtime.volume_create(name, labels)
    if not is_managed(created.labels):
        raise ForeignVolumeError(volume_name=name)
    logger.debug("created managed volume %s", name)
    return VolumeResult(name=name, freshly_created=True)


def remove_created_volumes(runtime: RuntimeClient, volumes: list[str]) -> list[str]:
    """Remove volumes this run created; return warnings for anything skipped.

    Never raises: each failure becomes a warning so the error that
    triggered cleanup stays the one reported.
    """
    warnings: list[str] = []
    for name in volumes:
        try:
            info = runtime.volume_inspect(name)
            if info is None:
                continue
            if not is_managed(info.labels):
                warnings.append(f"Skipped removing volume {name}: not managed by clawker")
                continue
            runtime.volume_remove(name)
            logger.debug("rolled back volume %s", name)
        except Exception as e:
            logger.warning("failed to remove volume %s: %s", name, e)
            warnings.append(f"Failed to remove volume {name}: {e}")
    return warnings


# ═══════════════════════════════════════════════════════════════════════════════
# Setup
# ═══════════════════════════════════════════════════════════════════════════════


def resolve_workdir(
    git: GitClient | None,
    config: ProjectConfig,
    agent: str,
    worktree: str | None,
    cwd: Path | None = None,
) -> tuple[Path, Path | None]:
    """Return (host workspace dir, main repo root when a worktree is used)."""
    project_root = config.root_dir or cwd or Path.cwd()
    if worktree is None:
        return project_root, None

    spec = parse_worktree_spec(worktree, agent)
    if git is None:
        raise WorktreeError(user_message="cannot use --worktree: git is not available")
    path = setup_worktree(git, project_root, config.project, spec)
    return path, project_root


def setup_workspace(
    runtime: RuntimeClient,
    git: GitClient | None,
    *,
    config: ProjectConfig,
    names: ResolvedNames,
    mode_override: str | None = None,
    worktree: str | None = None,
    cwd: Path | None = None,
    created_volumes: list[str] | None = None,
) -> WorkspaceResult:
    """Resolve the workspace, compute mounts and ensure per-agent volumes.

    Args:
        runtime: Runtime client for volume operations.
        git: Git client, required only with a worktree.
        config: Project config.
        names: Resolved names for this agent.
        mode_override: "bind" or "snapshot" from the command line.
        worktree: ``branch[:base]`` worktree specifier, or None.
        cwd: Fallback host directory when there is no project root.
        created_volumes: Appended to as volumes are created, so a failure
            part-way through still leaves the caller a complete list.

    Returns:
        WorkspaceResult with mounts and volume creation state.
    """
    created = created_volumes if created_volumes is not None else []
    mode = clawker_config.parse_workspace_mode(mode_override) if mode_override else config.workspace.default_mode
    remote_path = config.workspace.remote_path

    workdir, repo_root = resolve_workdir(git, config, names.agent, worktree, cwd)
    logger.debug("workspace %s mode=%s", workdir, mode.value)

    mounts: list[Mount] = []
    if mode is WorkspaceMode.SNAPSHOT:
        ws_name = names.volumes.get(VolumeKind.WORKSPACE) or volume_name(
            names.project, names.agent, VolumeKind.WORKSPACE
        )
        ws = ensure_volume(runtime, ws_name, volume_labels(names, VolumeKind.WORKSPACE))
        if ws.freshly_created:
            created.append(ws.name)
            runtime.copy_to_volume(ws.name, workdir, remote_path)
        mounts.append(volume_mount(ws.name, remote_path))
    else:
        mounts.append(bind_mount(str(workdir), remote_path))

    if repo_root is not None:
        mounts.append(worktree_git_mount(repo_root))

    config_volume = ensure_volume(
        runtime, names.config_volume, volume_labels(names, VolumeKind.CONFIG)
    )
    if config_volume.freshly_created:
        created.append(config_volume.name)
    mounts.append(volume_mount(config_volume.name, CONTAINER_CLAUDE_DIR))

    if config.security.docker_socket:
        mounts.append(bind_mount(DOCKER_SOCKET_PATH, DOCKER_SOCKET_PATH))

    return WorkspaceResult(
        mounts=mounts,
        workdir=workdir,
        mode=mode,
        config_volume=config_volume,
        created_volumes=created,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Git credentials
# ═══════════════════════════════════════════════════════════════════════════════


def is_ssh_agent_available() -> bool:
    """Return True if the host exposes an SSH agent socket."""
    sock = os.environ.get("SSH_AUTH_SOCK")
    if not sock:
        return False
    # Docker Desktop on macOS proxies the agent; the host path is not visible to us
    if sys.platform.startswith("linux"):
        return Path(sock).exists()
    return True


def gpg_extra_socket_path() -> str | None:
    """Return the host GPG agent extra socket, or None if unavailable."""
    try:
        result = subprocess.run(
            ["gpgconf", "--list-dir", "agent-extra-socket"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return None
    if result.returncode != 0:
        return None
    path = result.stdout.strip()
    if not path or not Path(path).exists():
        return None
    return path


def setup_git_credentials(
    creds: GitCredentialsConfig, host_proxy_running: bool
) -> GitCredentialSetup:
    """Decide which host git credentials reach the container and how.

    HTTPS goes through the host proxy, so it is advertised only when the
    proxy runs. SSH and GPG go through the socket bridge, never mounts.
    """
    setup = GitCredentialSetup()

    if creds.copy_git_config:
        gitconfig = Path.home() / ".gitconfig"
        if gitconfig.is_file():
            setup.mounts.append(bind_mount(str(gitconfig), CONTAINER_GITCONFIG_PATH, read_only=True))

    if creds.forward_https and host_proxy_running:
        setup.env.append("CLAWKER_GIT_HTTPS=true")

    setup.forward_ssh = creds.forward_ssh and is_ssh_agent_available()
    setup.forward_gpg = creds.forward_gpg and gpg_extra_socket_path() is not None
    return setup
