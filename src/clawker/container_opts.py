"""
Container options: the flag bag shared by ``run`` and ``create``.

ContainerOptions holds caller input as typed but unparsed values.
validate_flags() runs every cross-field check before any daemon call;
build_configs() turns the bag into the three Docker Engine API request
objects (container config, host config, networking config).
"""

from __future__ import annotations

import ipaddress
import json
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from .config import ProjectConfig
from .core.constants import (
    LABEL_AGENT,
    LABEL_CREATED,
    LABEL_IMAGE,
    LABEL_MANAGED,
    LABEL_PROJECT,
    LABEL_VERSION,
    LABEL_WORKDIR,
    MANAGED_LABEL_VALUE,
    NETWORK_NAME,
)
from .core.errors import ValidationError
from .mounts import Mount
from .ports.runtime_client import ContainerCreateRequest
from .runtime_env import merge_env

_MEMORY_UNITS = {"": 1, "b": 1, "k": 1024, "m": 1024**2, "g": 1024**3, "t": 1024**4}
_MEMORY_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([bkmgt]?)b?$", re.IGNORECASE)
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_MAC_RE = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}$")
_PROTOCOLS = ("tcp", "udp", "sctp")
_ATTACH_TARGETS = ("stdin", "stdout", "stderr")

# Namespace mode grammar: fixed keywords, plus container:<name> where shown
_NAMESPACE_MODES: dict[str, tuple[tuple[str, ...], bool]] = {
    "pid": (("", "host"), True),
    "ipc": (("", "none", "private", "shareable", "host"), True),
    "uts": (("", "host"), False),
    "userns": (("", "host"), False),
    "cgroupns": (("", "host", "private"), False),
}
_NAMESPACE_LABELS = {"pid": "PID", "ipc": "IPC", "uts": "UTS", "userns": "USER", "cgroupns": "CGROUP"}

_NETWORK_MODES_WITHOUT_ENDPOINTS = ("host", "none")


def _invalid(message: str, flag: str) -> ValidationError:
    return ValidationError(user_message=message, field=flag)


# ═══════════════════════════════════════════════════════════════════════════════
# Value parsers
# ═══════════════════════════════════════════════════════════════════════════════


def parse_memory(value: str, flag: str = "--memory") -> int:
    """Parse a Docker-style memory size (``512m``, ``2g``) into bytes."""
    match = _MEMORY_RE.match(value.strip())
    if not match:
        raise _invalid(f"invalid size {value!r} for {flag}", flag)
    number, unit = match.groups()
    return int(Decimal(number) * _MEMORY_UNITS[unit.lower()])


def parse_memory_swap(value: str) -> int:
    """Like parse_memory, but ``-1`` means unlimited."""
    if value.strip() == "-1":
        return -1
    return parse_memory(value, "--memory-swap")


def parse_duration(value: str, flag: str) -> int:
    """Parse a Go-style duration (``30s``, ``1m30s``, ``500ms``) into nanoseconds.

    A leading ``-`` yields a negative duration, which callers reject.
    """
    text = value.strip()
    sign = -1 if text.startswith("-") else 1
    text = text.lstrip("+-")
    if text == "0":
        return 0
    pos = 0
    total = Decimal(0)
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += Decimal(match.group(1)) * _DURATION_NS[match.group(2)]
        pos = match.end()
    if not text or pos != len(text):
        raise _invalid(f"invalid duration {value!r} for {flag}", flag)
    return sign * int(total)


def parse_cpus(value: str) -> int:
    """Parse a fractional CPU count into NanoCPUs."""
    try:
        cpus = Decimal(value)
    except InvalidOperation:
        raise _invalid(f"invalid value {value!r} for --cpus", "--cpus") from None
    if cpus < 0:
        raise _invalid("--cpus cannot be negative", "--cpus")
    return int(cpus * 1_000_000_000)


def parse_restart_policy(policy: str) -> dict[str, Any]:
    """Parse ``name[:maxRetries]`` into a RestartPolicy object."""
    if not policy:
        return {}
    name, sep, retries = policy.partition(":")
    if sep and not name:
        raise _invalid(
            "invalid restart policy format: no policy provided before colon", "--restart"
        )
    result: dict[str, Any] = {"Name": name}
    if retries:
        try:
            result["MaximumRetryCount"] = int(retries)
        except ValueError:
            raise _invalid(
                "invalid restart policy format: maximum retry count must be an integer",
                "--restart",
            ) from None
    return result


def validate_namespace_mode(kind: str, value: str) -> None:
    keywords, allows_container = _NAMESPACE_MODES[kind]
    if value in keywords:
        return
    if allows_container and value.startswith("container:") and value[len("container:") :]:
        return
    raise _invalid(f"--{kind}: invalid {_NAMESPACE_LABELS[kind]} mode", f"--{kind}")


@dataclass(frozen=True)
class PortMapping:
    """One parsed port publish entry."""

    container_port: int
    protocol: str = "tcp"
    host_ip: str = ""
    host_port: str = ""

    @property
    def key(self) -> str:
        return f"{self.container_port}/{self.protocol}"


def _parse_port_range(value: str, spec: str) -> list[int]:
    start, sep, end = value.partition("-")
    try:
        first = int(start)
        last = int(end) if sep else first
    except ValueError:
        raise _invalid(f"invalid port mapping {spec!r}: invalid port {value!r}", "--publish") from None
    if not (0 < first <= last <= 65535):
        raise _invalid(f"invalid port mapping {spec!r}: invalid port {value!r}", "--publish")
    return list(range(first, last + 1))


def parse_port_spec(spec: str) -> list[PortMapping]:
    """Parse ``[ip:][hostPort:]containerPort[/proto]``, ranges allowed.

    IPv6 host addresses are written in brackets: ``[::1]:8080:80``.
    """
    rest, slash, proto = spec.rpartition("/")
    if not slash:
        rest, proto = spec, "tcp"
    proto = proto.lower() or "tcp"
    if proto not in _PROTOCOLS:
        raise _invalid(f"invalid port mapping {spec!r}: invalid protocol {proto!r}", "--publish")

    host_ip = ""
    if rest.startswith("["):
        host_ip, bracket, rest = rest[1:].partition("]")
        if not bracket or not rest.startswith(":"):
            raise _invalid(f"invalid port mapping {spec!r}", "--publish")
        rest = rest[1:]
        parts = rest.split(":")
        if len(parts) == 1:
            parts.insert(0, "")
        parts.insert(0, host_ip)
    else:
        parts = rest.split(":")

    if len(parts) == 1:
        host_port, container = "", parts[0]
    elif len(parts) == 2:
        host_port, container = parts
    elif len(parts) == 3:
        host_ip, host_port, container = parts
    else:
        raise _invalid(f"invalid port mapping {spec!r}: too many colons", "--publish")

    if host_ip:
        try:
            ipaddress.ip_address(host_ip)
        except ValueError:
            raise _invalid(f"invalid port mapping {spec!r}: invalid host IP {host_ip!r}", "--publish") from None

    container_ports = _parse_port_range(container, spec)
    if not host_port:
        host_ports = [""] * len(container_ports)
    else:
        parsed = [str(p) for p in _parse_port_range(host_port, spec)]
        if len(parsed) == len(container_ports):
            host_ports = parsed
        elif len(container_ports) == 1:
            # A host range with a single container port lets the daemon pick one
            host_ports = [host_port]
        else:
            raise _invalid(
                f"invalid port mapping {spec!r}: host and container port ranges differ in length",
                "--publish",
            )

    return [
        PortMapping(container_port=cp, protocol=proto, host_ip=host_ip, host_port=hp)
        for cp, hp in zip(container_ports, host_ports)
    ]


def parse_expose(spec: str) -> list[str]:
    """Parse an --expose value (``3000-3005/tcp``) into port keys."""
    ports, slash, proto = spec.partition("/")
    proto = (proto if slash else "tcp").lower()
    if proto not in _PROTOCOLS:
        raise _invalid(f"invalid range format for --expose: invalid protocol {proto!r}", "--expose")
    try:
        numbers = _parse_port_range(ports, spec)
    except ValidationError as e:
        raise _invalid(f"invalid range format for --expose: {spec!r}", "--expose") from e
    return [f"{port}/{proto}" for port in numbers]


def parse_key_values(entries: list[str], flag: str, *, require_value: bool = True) -> dict[str, str]:
    """Parse ``KEY=VALUE`` entries into a dict; later entries win."""
    result: dict[str, str] = {}
    for entry in entries:
        key, sep, value = entry.partition("=")
        if not key or (require_value and not sep):
            raise _invalid(f"invalid {flag} {entry!r}: expected KEY=VALUE", flag)
        result[key] = value
    return result


def read_kv_file(path: str, flag: str) -> list[str]:
    """Read an env or label file: one entry per line, blanks and ``#`` comments skipped."""
    try:
        text = Path(path).read_text()
    except OSError as e:
        raise _invalid(f"failed to read {flag} {path!r}: {e.strerror or e}", flag) from e
    lines = []
    for raw in text.splitlines():
        line = raw.strip()
        if line and not line.startswith("#"):
            lines.append(line)
    return lines


def _resolve_env_entries(entries: list[str]) -> list[str]:
    """Expand bare ``KEY`` entries from the host environment, dropping unset ones."""
    resolved = []
    for entry in entries:
        if "=" in entry:
            resolved.append(entry)
        elif entry in os.environ:
            resolved.append(f"{entry}={os.environ[entry]}")
    return resolved


def _resolve_bind(bind: str) -> str:
    host, sep, rest = bind.partition(":")
    if sep and host.startswith(".") and not os.path.isabs(host):
        host = os.path.abspath(host)
    return host + sep + rest


def container_labels(
    *, project: str, agent: str, version: str, image: str, workdir: str
) -> dict[str, str]:
    """Return the managed labels stamped on every clawker container."""
    labels = {LABEL_MANAGED: MANAGED_LABEL_VALUE}
    if project:
        labels[LABEL_PROJECT] = project
    labels[LABEL_AGENT] = agent
    labels[LABEL_VERSION] = version
    labels[LABEL_IMAGE] = image
    labels[LABEL_CREATED] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    labels[LABEL_WORKDIR] = workdir
    return labels


# ═══════════════════════════════════════════════════════════════════════════════
# Options bag
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class ContainerOptions:
    """Caller-supplied container configuration.

    Empty strings, zero and None mean "not set". ``entrypoint=""`` resets
    the image entrypoint; ``entrypoint=None`` keeps it.
    """

    image: str = ""
    command: list[str] = field(default_factory=list)
    agent: str = ""
    name: str = ""
    mode: str = ""
    worktree: str | None = None

    detach: bool = False
    tty: bool = False
    stdin: bool = False
    attach: list[str] = field(default_factory=list)
    entrypoint: str | None = None
    workdir: str = ""
    user: str = ""
    hostname: str = ""
    init: bool | None = None
    read_only: bool = False
    auto_remove: bool = False
    restart: str = ""

    env: list[str] = field(default_factory=list)
    env_file: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    label_file: list[str] = field(default_factory=list)

    publish: list[str] = field(default_factory=list)
    expose: list[str] = field(default_factory=list)
    publish_all: bool = False
    network: str = ""
    mac_address: str = ""
    ip: str = ""
    ip6: str = ""
    dns: list[str] = field(default_factory=list)

    volumes: list[str] = field(default_factory=list)
    tmpfs: list[str] = field(default_factory=list)

    memory: str = ""
    memory_swap: str = ""
    memory_swappiness: int = -1
    cpus: str = ""
    blkio_weight: int = 0
    oom_score_adj: int = 0
    pids_limit: int = 0

    cap_add: list[str] = field(default_factory=list)
    cap_drop: list[str] = field(default_factory=list)
    privileged: bool = False
    security_opt: list[str] = field(default_factory=list)

    health_cmd: str = ""
    health_interval: str = ""
    health_timeout: str = ""
    health_retries: int = 0
    health_start_period: str = ""
    no_healthcheck: bool = False

    pid: str = ""
    ipc: str = ""
    uts: str = ""
    userns: str = ""
    cgroupns: str = ""

    log_driver: str = ""
    log_opts: list[str] = field(default_factory=list)
    annotations: list[str] = field(default_factory=list)
    sysctls: list[str] = field(default_factory=list)

    def agent_name(self) -> str:
        return self.agent or self.name

    # ─────────────────────────────────────────────────────────────────────────
    # Validation
    # ─────────────────────────────────────────────────────────────────────────

    def _has_health_settings(self) -> bool:
        return bool(
            self.health_cmd
            or self.health_interval
            or self.health_timeout
            or self.health_retries
            or self.health_start_period
        )

    def validate_flags(self) -> None:
        """Run every cross-field check that needs no daemon.

        Raises:
            ValidationError: On the first invalid value or combination.
        """
        memory = parse_memory(self.memory) if self.memory else 0
        swap = parse_memory_swap(self.memory_swap) if self.memory_swap else 0
        if swap > 0 and memory == 0:
            raise _invalid("--memory-swap requires --memory to be set", "--memory-swap")
        if swap > 0 and swap < memory:
            raise _invalid("--memory-swap must be greater than or equal to --memory", "--memory-swap")
        if not -1 <= self.memory_swappiness <= 100:
            raise _invalid("--memory-swappiness must be between -1 and 100", "--memory-swappiness")
        if self.blkio_weight != 0 and not 10 <= self.blkio_weight <= 1000:
            raise _invalid(
                "--blkio-weight must be between 10 and 1000, or 0 to disable", "--blkio-weight"
            )
        if not -1000 <= self.oom_score_adj <= 1000:
            raise _invalid("--oom-score-adj must be between -1000 and 1000", "--oom-score-adj")
        if self.cpus:
            parse_cpus(self.cpus)

        if self.mac_address and not _MAC_RE.match(self.mac_address.strip()):
            raise _invalid(f"{self.mac_address} is not a valid mac address", "--mac-address")
        if self.ip:
            try:
                ipaddress.IPv4Address(self.ip)
            except ValueError:
                raise _invalid(f"{self.ip} is not an ip address", "--ip") from None
        if self.ip6:
            try:
                ipaddress.IPv6Address(self.ip6)
            except ValueError:
                raise _invalid(f"{self.ip6} is not an ip address", "--ip6") from None
        for server in self.dns:
            try:
                ipaddress.ip_address(server)
            except ValueError:
                raise _invalid(f"invalid DNS server address {server!r}", "--dns") from None

        for target in self.attach:
            if target.lower() not in _ATTACH_TARGETS:
                raise _invalid(
                    f"invalid attach target {target!r}: must be stdin, stdout, or stderr", "--attach"
                )

        self._validate_healthcheck()
        parse_restart_policy(self.restart)
        if self.auto_remove and self.restart not in ("", "no"):
            raise _invalid("conflicting options: cannot specify both --restart and --rm", "--restart")

        for kind in _NAMESPACE_MODES:
            validate_namespace_mode(kind, getattr(self, kind))

        if self.log_driver == "none" and self.log_opts:
            raise _invalid("invalid logging opts for driver none", "--log-opt")

        # Everything build_configs parses fails here too, before any daemon call
        for spec in self.expose:
            parse_expose(spec)
        for spec in self.publish:
            parse_port_spec(spec)
        for path in self.env_file:
            read_kv_file(path, "--env-file")
        file_labels: list[str] = []
        for path in self.label_file:
            file_labels.extend(read_kv_file(path, "--label-file"))
        parse_key_values(file_labels + self.labels, "--label", require_value=False)
        parse_key_values(self.log_opts, "--log-opt")
        parse_key_values(self.annotations, "--annotation")
        parse_key_values(self.sysctls, "--sysctl")
        _parse_security_opts(self.security_opt)

    def _validate_healthcheck(self) -> dict[str, Any] | None:
        if self.no_healthcheck:
            if self._has_health_settings():
                raise _invalid("--no-healthcheck conflicts with --health-* options", "--no-healthcheck")
            return {"Test": ["NONE"]}
        if not self._has_health_settings():
            return None
        if not self.health_cmd:
            raise _invalid("--health-cmd is required when using --health-* options", "--health-cmd")

        check: dict[str, Any] = {"Test": ["CMD-SHELL", self.health_cmd]}
        for flag, value, key in (
            ("--health-interval", self.health_interval, "Interval"),
            ("--health-timeout", self.health_timeout, "Timeout"),
            ("--health-start-period", self.health_start_period, "StartPeriod"),
        ):
            if not value:
                continue
            nanos = parse_duration(value, flag)
            if nanos < 0:
                raise _invalid(f"{flag} cannot be negative", flag)
            check[key] = nanos
        if self.health_retries < 0:
            raise _invalid("--health-retries cannot be negative", "--health-retries")
        if self.health_retries:
            check["Retries"] = self.health_retries
        return check

    # ─────────────────────────────────────────────────────────────────────────
    # Request building
    # ─────────────────────────────────────────────────────────────────────────

    def _attach_streams(self) -> tuple[bool, bool, bool]:
        if not self.attach:
            return self.stdin, True, True
        targets = {t.lower() for t in self.attach}
        return "stdin" in targets, "stdout" in targets, "stderr" in targets

    def build_configs(
        self,
        *,
        container_name: str,
        mounts: list[Mount],
        project: ProjectConfig,
        base_env: list[str] | None = None,
        managed_labels: dict[str, str] | None = None,
    ) -> ContainerCreateRequest:
        """Build the create request.

        Args:
            container_name: Deterministic container name.
            mounts: Workspace, config volume and credential mounts.
            project: Project config, for default capabilities.
            base_env: Runtime and wiring env; env files and -e entries
                override it, in that order.
            managed_labels: Labels that win over caller labels.

        Raises:
            ValidationError: If any option is invalid.
        """
        self.validate_flags()

        attach_stdin, attach_stdout, attach_stderr = self._attach_streams()

        file_env: list[str] = []
        for path in self.env_file:
            file_env.extend(read_kv_file(path, "--env-file"))
        env = merge_env(
            base_env or [],
            _resolve_env_entries(file_env),
            _resolve_env_entries(self.env),
        )

        file_labels: list[str] = []
        for path in self.label_file:
            file_labels.extend(read_kv_file(path, "--label-file"))
        labels = parse_key_values(file_labels + self.labels, "--label", require_value=False)
        labels.update(managed_labels or {})

        config: dict[str, Any] = {
            "Image": self.image,
            "Tty": self.tty,
            "OpenStdin": self.stdin,
            "AttachStdin": attach_stdin,
            "AttachStdout": attach_stdout,
            "AttachStderr": attach_stderr,
            "Env": env,
            "Labels": labels,
        }
        # Close stdin when the attached client disconnects
        if self.stdin and attach_stdin:
            config["StdinOnce"] = True
        if self.command:
            config["Cmd"] = list(self.command)
        if self.entrypoint is not None:
            config["Entrypoint"] = [self.entrypoint]
        if self.hostname:
            config["Hostname"] = self.hostname
        if self.workdir:
            config["WorkingDir"] = self.workdir
        if self.user:
            config["User"] = self.user

        healthcheck = self._validate_healthcheck()
        if healthcheck is not None:
            config["Healthcheck"] = healthcheck

        exposed: dict[str, dict[str, Any]] = {}
        for spec in self.expose:
            for key in parse_expose(spec):
                exposed[key] = {}
        bindings: dict[str, list[dict[str, str]]] = {}
        for spec in self.publish:
            for mapping in parse_port_spec(spec):
                exposed[mapping.key] = {}
                bindings.setdefault(mapping.key, []).append(
                    {"HostIp": mapping.host_ip, "HostPort": mapping.host_port}
                )
        if exposed:
            config["ExposedPorts"] = exposed

        host_config = self._host_config(mounts, project, bindings)
        networking_config = self._networking_config(host_config["NetworkMode"])

        return ContainerCreateRequest(
            name=container_name,
            config=config,
            host_config=host_config,
            networking_config=networking_config,
        )

    def _host_config(
        self,
        mounts: list[Mount],
        project: ProjectConfig,
        bindings: dict[str, list[dict[str, str]]],
    ) -> dict[str, Any]:
        host: dict[str, Any] = {
            "AutoRemove": self.auto_remove,
            "Mounts": [m.to_api() for m in mounts],
            "PublishAllPorts": self.publish_all,
            "NetworkMode": self.network or NETWORK_NAME,
        }
        if bindings:
            host["PortBindings"] = bindings
        if self.volumes:
            host["Binds"] = [_resolve_bind(v) for v in self.volumes]
        if self.tmpfs:
            host["Tmpfs"] = {
                path: options for path, _, options in (t.partition(":") for t in self.tmpfs)
            }
        if self.read_only:
            host["ReadonlyRootfs"] = True
        if self.restart:
            host["RestartPolicy"] = parse_restart_policy(self.restart)
        if self.init is not None:
            host["Init"] = self.init

        # CLI capabilities replace the project's rather than extending them
        cap_add = self.cap_add or list(project.security.cap_add)
        if cap_add:
            host["CapAdd"] = cap_add
        if self.cap_drop:
            host["CapDrop"] = list(self.cap_drop)
        if self.privileged:
            host["Privileged"] = True
        if self.security_opt:
            host["SecurityOpt"] = _parse_security_opts(self.security_opt)

        for kind, key in (
            ("pid", "PidMode"),
            ("ipc", "IpcMode"),
            ("uts", "UTSMode"),
            ("userns", "UsernsMode"),
            ("cgroupns", "CgroupnsMode"),
        ):
            value = getattr(self, kind)
            if value:
                host[key] = value

        if self.log_driver:
            host["LogConfig"] = {
                "Type": self.log_driver,
                "Config": parse_key_values(self.log_opts, "--log-opt"),
            }
        if self.annotations:
            host["Annotations"] = parse_key_values(self.annotations, "--annotation")
        if self.sysctls:
            host["Sysctls"] = parse_key_values(self.sysctls, "--sysctl")
        if self.dns:
            host["Dns"] = list(self.dns)

        if self.memory:
            host["Memory"] = parse_memory(self.memory)
        if self.memory_swap:
            host["MemorySwap"] = parse_memory_swap(self.memory_swap)
        if self.memory_swappiness != -1:
            host["MemorySwappiness"] = self.memory_swappiness
        if self.cpus:
            host["NanoCpus"] = parse_cpus(self.cpus)
        if self.blkio_weight:
            host["BlkioWeight"] = self.blkio_weight
        if self.oom_score_adj:
            host["OomScoreAdj"] = self.oom_score_adj
        if self.pids_limit:
            host["PidsLimit"] = self.pids_limit
        return host

    def _networking_config(self, network_mode: str) -> dict[str, Any]:
        if network_mode in _NETWORK_MODES_WITHOUT_ENDPOINTS or network_mode.startswith("container:"):
            return {}
        endpoint: dict[str, Any] = {}
        ipam = {}
        if self.ip:
            ipam["IPv4Address"] = self.ip
        if self.ip6:
            ipam["IPv6Address"] = self.ip6
        if ipam:
            endpoint["IPAMConfig"] = ipam
        if self.mac_address:
            endpoint["MacAddress"] = self.mac_address.strip()
        return {"EndpointsConfig": {network_mode: endpoint}}


def _parse_security_opts(opts: list[str]) -> list[str]:
    """Validate --security-opt values and inline seccomp profile files."""
    parsed = []
    for opt in opts:
        if opt == "no-new-privileges":
            parsed.append(opt)
            continue
        key, sep, value = opt.partition("=")
        if not sep:
            key, sep, value = opt.partition(":")
        if not sep:
            raise _invalid(f"invalid --security-opt: {opt!r}", "--security-opt")
        if key == "seccomp" and value not in ("builtin", "unconfined"):
            try:
                profile = json.loads(Path(value).read_text())
            except (OSError, json.JSONDecodeError) as e:
                raise _invalid(
                    f"opening seccomp profile ({value}) failed: {e}", "--security-opt"
                ) from e
            parsed.append("seccomp=" + json.dumps(profile, separators=(",", ":")))
            continue
        parsed.append(f"{key}={value}")
    return parsed
