"""Compose the environment of an agent container."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .config import IPRangeSource
from .core.constants import CONTAINER_GPG_AGENT_PATH, CONTAINER_SSH_AGENT_PATH, DEFAULT_EDITOR
from .kinds import SocketType


@dataclass
class RuntimeEnvOptions:
    """Inputs to runtime_env(); every field maps to one env var or family.

    Precedence, last wins: base values, then terminal capabilities, then
    agent env, then instruction env.
    """

    project: str = ""
    agent: str = ""
    workspace_mode: str = ""
    workspace_source: str = ""
    version: str = ""
    editor: str = ""
    visual: str = ""
    is_256_color: bool = False
    truecolor: bool = False
    firewall_enabled: bool = False
    firewall_domains: list[str] = field(default_factory=list)
    firewall_override: bool = False
    firewall_ip_range_sources: list[IPRangeSource] = field(default_factory=list)
    gpg_forwarding: bool = False
    ssh_forwarding: bool = False
    agent_env: dict[str, str] = field(default_factory=dict)
    instruction_env: dict[str, str] = field(default_factory=dict)


def _compact(value: object) -> str:
    return json.dumps(value, separators=(",", ":"))


def runtime_env(opts: RuntimeEnvOptions) -> list[str]:
    """Return the sorted ``KEY=VALUE`` list for the container."""
    env: dict[str, str] = {}

    if opts.project:
        env["CLAWKER_PROJECT"] = opts.project
    if opts.agent:
        env["CLAWKER_AGENT"] = opts.agent
    if opts.workspace_mode:
        env["CLAWKER_WORKSPACE_MODE"] = opts.workspace_mode
    if opts.workspace_source:
        env["CLAWKER_WORKSPACE_SOURCE"] = opts.workspace_source
    if opts.version:
        env["CLAWKER_VERSION"] = opts.version

    env["EDITOR"] = opts.editor or DEFAULT_EDITOR
    env["VISUAL"] = opts.visual or DEFAULT_EDITOR

    if opts.is_256_color:
        env["TERM"] = "xterm-256color"
    if opts.truecolor:
        env["COLORTERM"] = "truecolor"

    # Consumed by the entrypoint's firewall init script
    if opts.firewall_enabled:
        env["CLAWKER_FIREWALL_DOMAINS"] = _compact(opts.firewall_domains)
        if opts.firewall_override:
            env["CLAWKER_FIREWALL_OVERRIDE"] = "true"
        env["CLAWKER_FIREWALL_IP_RANGE_SOURCES"] = _compact(
            [source.to_dict() for source in opts.firewall_ip_range_sources]
        )

    attrs = []
    if opts.project:
        attrs.append(f"project={opts.project}")
    if opts.agent:
        attrs.append(f"agent={opts.agent}")
    if attrs:
        env["OTEL_RESOURCE_ATTRIBUTES"] = ",".join(attrs)

    # Consumed by the in-container socket server the bridge talks to
    sockets = []
    if opts.gpg_forwarding:
        sockets.append({"path": CONTAINER_GPG_AGENT_PATH, "type": SocketType.GPG_AGENT.value})
    if opts.ssh_forwarding:
        sockets.append({"path": CONTAINER_SSH_AGENT_PATH, "type": SocketType.SSH_AGENT.value})
        env["SSH_AUTH_SOCK"] = CONTAINER_SSH_AGENT_PATH
    if sockets:
        env["CLAWKER_REMOTE_SOCKETS"] = _compact(sockets)

    env.update(opts.agent_env)
    env.update(opts.instruction_env)

    return [f"{key}={env[key]}" for key in sorted(env)]


def env_to_dict(entries: Iterable[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` entries; a bare ``KEY`` maps to an empty value."""
    result: dict[str, str] = {}
    for entry in entries:
        key, _, value = entry.partition("=")
        if key:
            result[key] = value
    return result


def merge_env(*sources: Iterable[str] | Mapping[str, str]) -> list[str]:
    """Merge env sources in order; a later source wins for a repeated key.

    Keys keep the position of their first occurrence.
    """
    merged: dict[str, str] = {}
    for source in sources:
        items = source if isinstance(source, Mapping) else env_to_dict(source)
        for key, value in items.items():
            merged[key] = value
    return [f"{key}={value}" for key, value in merged.items()]
