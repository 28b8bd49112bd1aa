"""
Configuration management.

Two files feed clawker:
- clawker.yaml  project config, discovered by walking up from the working
                directory; its directory is the project root
- settings.yaml user settings in the clawker home directory

Both are parsed with PyYAML into frozen dataclasses with defaults applied,
so the pipeline never sees a missing key.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .core.constants import (
    CLAWKER_CONFIG_DIR_ENV,
    DEFAULT_FIREWALL_DOMAINS,
    DEFAULT_REMOTE_PATH,
    PROJECT_CONFIG_FILENAME,
    SETTINGS_FILENAME,
)
from .core.errors import ConfigError, ValidationError
from .kinds import ClaudeStrategy, WorkspaceMode

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Paths
# ═══════════════════════════════════════════════════════════════════════════════


def clawker_home() -> Path:
    """Return the clawker home directory ($CLAWKER_CONFIG_DIR or ~/.local/clawker)."""
    override = os.environ.get(CLAWKER_CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".local" / "clawker"


def logs_dir() -> Path:
    return clawker_home() / "logs"


def bridges_dir() -> Path:
    return clawker_home() / "bridges"


def bridge_pid_file(container_id: str) -> Path:
    """Return the PID file path tracking the bridge daemon of a container."""
    return bridges_dir() / f"{container_id}.pid"


def worktrees_dir(project: str) -> Path:
    return clawker_home() / "worktrees" / (project or "_default")


# ═══════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ClaudeCodeConfig:
    """Claude Code seeding policy for the config volume."""

    strategy: ClaudeStrategy = ClaudeStrategy.COPY
    use_host_auth: bool = True


@dataclass(frozen=True)
class AgentConfig:
    """Per-agent container settings."""

    env: dict[str, str] = field(default_factory=dict)
    editor: str = ""
    visual: str = ""
    post_init: str = ""
    claude_code: ClaudeCodeConfig = field(default_factory=ClaudeCodeConfig)


@dataclass(frozen=True)
class WorkspaceConfig:
    """Where and how the project lands inside the container."""

    remote_path: str = DEFAULT_REMOTE_PATH
    default_mode: WorkspaceMode = WorkspaceMode.BIND


@dataclass(frozen=True)
class IPRangeSource:
    """A published IP range list the in-container firewall may allow."""

    name: str
    url: str = ""
    jq_filter: str = ""
    required: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.url:
            data["url"] = self.url
        if self.jq_filter:
            data["jq_filter"] = self.jq_filter
        if self.required is not None:
            data["required"] = self.required
        return data


@dataclass(frozen=True)
class FirewallConfig:
    """Outbound firewall policy for agent containers.

    Invariants:
        - override_domains, when non-empty, replaces the default list entirely.
        - add_domains extends the default list and is ignored in override mode.
    """

    enable: bool = True
    add_domains: tuple[str, ...] = ()
    override_domains: tuple[str, ...] = ()
    ip_range_sources: tuple[IPRangeSource, ...] = (IPRangeSource(name="github"),)

    def is_override_mode(self) -> bool:
        return bool(self.override_domains)

    def domains(self) -> list[str]:
        """Return the effective allow-list, de-duplicated in order."""
        if self.is_override_mode():
            candidates: tuple[str, ...] = self.override_domains
        else:
            candidates = DEFAULT_FIREWALL_DOMAINS + self.add_domains
        return list(dict.fromkeys(candidates))


@dataclass(frozen=True)
class GitCredentialsConfig:
    """Which host git credentials are forwarded into the container."""

    forward_https: bool = True
    forward_ssh: bool = True
    forward_gpg: bool = True
    copy_git_config: bool = True


@dataclass(frozen=True)
class SecurityConfig:
    """Security posture of agent containers."""

    enable_host_proxy: bool = True
    docker_socket: bool = False
    cap_add: tuple[str, ...] = ()
    firewall: FirewallConfig = field(default_factory=FirewallConfig)
    git_credentials: GitCredentialsConfig = field(default_factory=GitCredentialsConfig)


@dataclass(frozen=True)
class ProjectConfig:
    """Parsed clawker.yaml.

    Args:
        project: Project key forming the first segment of container names.
        default_image: Image used when the caller asks for "@".
        root_dir: Directory holding clawker.yaml, or None without a config file.
        workspace: Workspace mount settings.
        agent: Agent container settings.
        security: Security posture.
        instruction_env: Env overrides from build.instructions.env.
    """

    project: str = ""
    default_image: str = ""
    root_dir: Path | None = None
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    instruction_env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class UserSettings:
    """Parsed settings.yaml from the clawker home directory."""

    default_image: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════════════════════


def parse_workspace_mode(value: str | None) -> WorkspaceMode:
    """Parse a workspace mode; empty means bind.

    Raises:
        ValidationError: If the value is not 'bind' or 'snapshot'.
    """
    if not value:
        return WorkspaceMode.BIND
    try:
        return WorkspaceMode(value)
    except ValueError:
        raise ValidationError(
            user_message=f"invalid workspace mode {value!r}: must be 'bind' or 'snapshot'",
            field="mode",
        ) from None


def parse_claude_strategy(value: str | None) -> ClaudeStrategy:
    """Parse a Claude Code strategy; empty means copy."""
    if not value:
        return ClaudeStrategy.COPY
    try:
        return ClaudeStrategy(value)
    except ValueError:
        raise ValidationError(
            user_message=f"invalid claude_code.strategy {value!r}: must be 'copy' or 'fresh'",
            field="agent.claude_code.strategy",
        ) from None


class _Reader:
    """Typed accessors over a YAML mapping that name the offending key on error."""

    def __init__(self, data: Mapping[str, Any], source: str, prefix: str = "") -> None:
        self._data = data
        self.source = source
        self._prefix = prefix

    def fail(self, key: str, expected: str) -> ConfigError:
        return ConfigError(
            user_message=f"{self.source}: '{self._prefix}{key}' must be {expected}",
            path=self.source,
        )

    def section(self, key: str) -> _Reader:
        value = self._data.get(key)
        if value is None:
            value = {}
        if not isinstance(value, Mapping):
            raise self.fail(key, "a mapping")
        return _Reader(value, self.source, f"{self._prefix}{key}.")

    def get_str(self, key: str, default: str = "") -> str:
        value = self._data.get(key)
        if value is None:
            return default
        if not isinstance(value, str):
            raise self.fail(key, "a string")
        return value

    def get_bool(self, key: str, default: bool) -> bool:
        value = self._data.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            raise self.fail(key, "true or false")
        return value

    def str_list(self, key: str) -> tuple[str, ...]:
        value = self._data.get(key)
        if value is None:
            return ()
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise self.fail(key, "a list of strings")
        return tuple(value)

    def str_map(self, key: str) -> dict[str, str]:
        value = self._data.get(key)
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise self.fail(key, "a mapping")
        # YAML turns unquoted numbers and booleans into non-strings; env values are text
        return {str(k): "" if v is None else str(v) for k, v in value.items()}

    def raw(self, key: str) -> Any:
        return self._data.get(key)


def _parse_ip_range_sources(reader: _Reader) -> tuple[IPRangeSource, ...]:
    raw = reader.raw("ip_range_sources")
    if raw is None:
        return FirewallConfig().ip_range_sources
    if not isinstance(raw, list):
        raise reader.fail("ip_range_sources", "a list")
    sources = []
    for item in raw:
        if isinstance(item, str):
            sources.append(IPRangeSource(name=item))
            continue
        if not isinstance(item, Mapping) or not isinstance(item.get("name"), str):
            raise reader.fail("ip_range_sources", "a list of {name, url, jq_filter, required}")
        entry = _Reader(item, reader.source)
        required = entry.raw("required")
        sources.append(
            IPRangeSource(
                name=entry.get_str("name"),
                url=entry.get_str("url"),
                jq_filter=entry.get_str("jq_filter"),
                required=bool(required) if required is not None else None,
            )
        )
    return tuple(sources)


def project_config_from_dict(
    data: Mapping[str, Any], *, root_dir: Path | None = None, source: str = PROJECT_CONFIG_FILENAME
) -> ProjectConfig:
    """Build a ProjectConfig from parsed YAML, applying defaults.

    Raises:
        ConfigError: On wrong value types.
        ValidationError: On unknown enum values.
    """
    top = _Reader(data, source)

    workspace = top.section("workspace")
    agent = top.section("agent")
    claude_code = agent.section("claude_code")
    security = top.section("security")
    firewall = security.section("firewall")
    git_credentials = security.section("git_credentials")
    instructions = top.section("build").section("instructions")

    return ProjectConfig(
        project=top.get_str("project"),
        default_image=top.get_str("default_image"),
        root_dir=root_dir,
        workspace=WorkspaceConfig(
            remote_path=workspace.get_str("remote_path", DEFAULT_REMOTE_PATH) or DEFAULT_REMOTE_PATH,
            default_mode=parse_workspace_mode(workspace.get_str("default_mode")),
        ),
        agent=AgentConfig(
            env=agent.str_map("env"),
            editor=agent.get_str("editor"),
            visual=agent.get_str("visual"),
            post_init=agent.get_str("post_init"),
            claude_code=ClaudeCodeConfig(
                strategy=parse_claude_strategy(claude_code.get_str("strategy")),
                use_host_auth=claude_code.get_bool("use_host_auth", True),
            ),
        ),
        security=SecurityConfig(
            enable_host_proxy=security.get_bool("enable_host_proxy", True),
            docker_socket=security.get_bool("docker_socket", False),
            cap_add=security.str_list("cap_add"),
            firewall=FirewallConfig(
                enable=firewall.get_bool("enable", True),
                add_domains=firewall.str_list("add_domains"),
                override_domains=firewall.str_list("override_domains"),
                ip_range_sources=_parse_ip_range_sources(firewall),
            ),
            git_credentials=GitCredentialsConfig(
                forward_https=git_credentials.get_bool("forward_https", True),
                forward_ssh=git_credentials.get_bool("forward_ssh", True),
                forward_gpg=git_credentials.get_bool("forward_gpg", True),
                copy_git_config=git_credentials.get_bool("copy_git_config", True),
            ),
        ),
        instruction_env=instructions.str_map("env"),
    )


def _read_yaml(path: Path) -> Mapping[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(
            user_message=f"Invalid YAML in {path}",
            suggested_action="Fix the syntax error and retry",
            debug_context=str(e),
            path=str(path),
        ) from e
    except OSError as e:
        raise ConfigError(
            user_message=f"Cannot read {path}: {e.strerror or e}", path=str(path)
        ) from e

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(user_message=f"{path} must contain a YAML mapping", path=str(path))
    return data


# ═══════════════════════════════════════════════════════════════════════════════
# Loading
# ═══════════════════════════════════════════════════════════════════════════════


def find_project_config(start_dir: Path) -> Path | None:
    """Walk up from start_dir looking for clawker.yaml."""
    current = start_dir.resolve()
    for directory in (current, *current.parents):
        candidate = directory / PROJECT_CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_project_config(start_dir: Path | None = None) -> ProjectConfig:
    """Load clawker.yaml for the project containing start_dir.

    Returns defaults (no project, no root dir) when no config file exists.
    """
    start = start_dir or Path.cwd()
    config_path = find_project_config(start)
    if config_path is None:
        logger.debug("no %s found above %s, using defaults", PROJECT_CONFIG_FILENAME, start)
        return ProjectConfig()

    logger.debug("loading project config from %s", config_path)
    data = _read_yaml(config_path)
    return project_config_from_dict(data, root_dir=config_path.parent, source=str(config_path))


def load_settings() -> UserSettings:
    """Load settings.yaml from the clawker home, or defaults if absent."""
    settings_path = clawker_home() / SETTINGS_FILENAME
    if not settings_path.is_file():
        return UserSettings()
    data = _Reader(_read_yaml(settings_path), str(settings_path))
    return UserSettings(default_image=data.get_str("default_image"))
