"""
Container commands: run and create.

Both commands take the same flags and share one implementation. ``create``
stops after the initialization pipeline; ``run`` either starts the
container in the pipeline (``--detach``) or attaches the caller's terminal
and starts it afterwards.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.prompt import Confirm

from ... import __version__
from ...application.attach import AttachOptions, attach_and_start
from ...application.image import ensure_default_image, resolve_image
from ...application.init_container import ContainerInitializer, InitParams
from ...bootstrap import DefaultAdapters, get_default_adapters
from ...cli_common import err_console, handle_errors, print_warnings
from ...config import load_project_config, load_settings
from ...container_opts import ContainerOptions
from ...core.errors import StageError
from .render import rebuild_prompt, render_container_id

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# Container App
# ─────────────────────────────────────────────────────────────────────────────

container_app = typer.Typer(
    name="container",
    help="Create and run agent containers.",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)

# Options after IMAGE belong to the container command
COMMAND_CONTEXT = {"allow_interspersed_args": False, "help_option_names": ["-h", "--help"]}


# ─────────────────────────────────────────────────────────────────────────────
# Shared Flow
# ─────────────────────────────────────────────────────────────────────────────


def _confirm_rebuild(message: str) -> bool:
    return Confirm.ask(rebuild_prompt(message), console=err_console, default=True)


def execute(opts: ContainerOptions, *, create_only: bool, adapters: DefaultAdapters | None = None) -> None:
    """Resolve the image, run the pipeline and hand off to the container.

    Args:
        opts: Parsed command flags.
        create_only: Stop once the container exists (``create``).
        adapters: Adapter wiring; defaults to the production adapters.
    """
    adapters = adapters or get_default_adapters()
    verb = "create" if create_only else "run"
    cwd = Path.cwd()

    project = load_project_config(cwd)
    settings = load_settings()
    runtime = adapters.runtime_client
    runtime.ping()

    interactive = adapters.terminal.is_terminal()
    resolved = resolve_image(runtime, opts.image, project, settings, command_verb=verb)
    ensure_default_image(
        runtime,
        resolved,
        interactive=interactive,
        confirm=_confirm_rebuild,
        builder=adapters.image_builder,
        command_verb=verb,
    )

    initializer = ContainerInitializer(
        runtime,
        keychain=adapters.keychain,
        host_proxy=adapters.host_proxy,
        git=adapters.git_client,
        terminal=adapters.terminal,
        progress=adapters.progress if interactive else None,
        socket_bridge=adapters.socket_bridge,
        version=__version__,
    )
    start_now = opts.detach and not create_only
    result = initializer.run(
        InitParams(opts, project, resolved.reference, start_after_create=start_now, cwd=cwd)
    )
    # Warnings go out before the container owns the terminal
    print_warnings(result.warnings)

    if create_only:
        render_container_id(result.container_id, short=False)
        return
    if opts.detach:
        render_container_id(result.container_id, short=True)
        return

    try:
        attach_and_start(
            runtime,
            adapters.terminal,
            result.container_id,
            AttachOptions(
                tty=opts.tty,
                stdin=opts.stdin,
                auto_remove=opts.auto_remove,
                forward_ssh=result.forward_ssh,
                forward_gpg=result.forward_gpg,
            ),
            socket_bridge=adapters.socket_bridge,
            warn=lambda warning: print_warnings([warning]),
        )
    except StageError as e:
        # Attach or start failed; the container never ran
        initializer.discard(result, e)
        raise


# ─────────────────────────────────────────────────────────────────────────────
# Run / Create Command
# ─────────────────────────────────────────────────────────────────────────────


@handle_errors
def run_cmd(
    ctx: typer.Context,
    image: str = typer.Argument(..., help="Image to run, or @ to resolve the project image"),
    command: list[str] | None = typer.Argument(None, help="Command and arguments for the container"),
    agent: str = typer.Option("", "--agent", help="Agent name (default: random)"),
    name: str = typer.Option("", "--name", help="Alias for --agent"),
    mode: str = typer.Option("", "--mode", help="Workspace mode: bind or snapshot"),
    worktree: str | None = typer.Option(
        None, "--worktree", help="Run in a git worktree: BRANCH or BRANCH:BASE"
    ),
    detach: bool = typer.Option(False, "-d", "--detach", help="Run in background and print the ID"),
    tty: bool = typer.Option(False, "-t", "--tty", help="Allocate a pseudo-TTY"),
    interactive: bool = typer.Option(False, "-i", "--interactive", help="Keep STDIN open"),
    attach: list[str] | None = typer.Option(None, "-a", "--attach", help="Attach to STDIN, STDOUT or STDERR"),
    env: list[str] | None = typer.Option(None, "-e", "--env", help="Set environment variables"),
    env_file: list[str] | None = typer.Option(None, "--env-file", help="Read environment files"),
    label: list[str] | None = typer.Option(None, "-l", "--label", help="Set metadata labels"),
    label_file: list[str] | None = typer.Option(None, "--label-file", help="Read label files"),
    publish: list[str] | None = typer.Option(None, "-p", "--publish", help="Publish container ports"),
    expose: list[str] | None = typer.Option(None, "--expose", help="Expose ports without publishing"),
    publish_all: bool = typer.Option(False, "-P", "--publish-all", help="Publish all exposed ports"),
    volume: list[str] | None = typer.Option(None, "-v", "--volume", help="Bind mount a volume"),
    tmpfs: list[str] | None = typer.Option(None, "--tmpfs", help="Mount a tmpfs directory"),
    network: str = typer.Option("", "--network", help="Connect to a network"),
    rm: bool = typer.Option(False, "--rm", help="Remove the container when it exits"),
    restart: str = typer.Option("", "--restart", help="Restart policy"),
    memory: str = typer.Option("", "--memory", help="Memory limit"),
    memory_swap: str = typer.Option("", "--memory-swap", help="Memory plus swap limit, -1 for unlimited"),
    memory_swappiness: int = typer.Option(-1, "--memory-swappiness", help="Swappiness (0 to 100)"),
    cpus: str = typer.Option("", "--cpus", help="Number of CPUs"),
    blkio_weight: int = typer.Option(0, "--blkio-weight", help="Block IO weight (10 to 1000)"),
    oom_score_adj: int = typer.Option(0, "--oom-score-adj", help="OOM score adjustment"),
    pids_limit: int = typer.Option(0, "--pids-limit", help="PIDs limit, -1 for unlimited"),
    cap_add: list[str] | None = typer.Option(None, "--cap-add", help="Add Linux capabilities"),
    cap_drop: list[str] | None = typer.Option(None, "--cap-drop", help="Drop Linux capabilities"),
    privileged: bool = typer.Option(False, "--privileged", help="Give extended privileges"),
    security_opt: list[str] | None = typer.Option(None, "--security-opt", help="Security options"),
    health_cmd: str = typer.Option("", "--health-cmd", help="Command to run to check health"),
    health_interval: str = typer.Option("", "--health-interval", help="Time between health checks"),
    health_timeout: str = typer.Option("", "--health-timeout", help="Maximum time for one check"),
    health_retries: int = typer.Option(0, "--health-retries", help="Failures before unhealthy"),
    health_start_period: str = typer.Option("", "--health-start-period", help="Start period"),
    no_healthcheck: bool = typer.Option(False, "--no-healthcheck", help="Disable any HEALTHCHECK"),
    pid: str = typer.Option("", "--pid", help="PID namespace"),
    ipc: str = typer.Option("", "--ipc", help="IPC mode"),
    uts: str = typer.Option("", "--uts", help="UTS namespace"),
    userns: str = typer.Option("", "--userns", help="User namespace"),
    cgroupns: str = typer.Option("", "--cgroupns", help="Cgroup namespace"),
    log_driver: str = typer.Option("", "--log-driver", help="Logging driver"),
    log_opt: list[str] | None = typer.Option(None, "--log-opt", help="Log driver options"),
    annotation: list[str] | None = typer.Option(None, "--annotation", help="OCI annotations"),
    sysctl: list[str] | None = typer.Option(None, "--sysctl", help="Sysctl options"),
    mac_address: str = typer.Option("", "--mac-address", help="Container MAC address"),
    ip: str = typer.Option("", "--ip", help="IPv4 address"),
    ip6: str = typer.Option("", "--ip6", help="IPv6 address"),
    dns: list[str] | None = typer.Option(None, "--dns", help="Custom DNS servers"),
    hostname: str = typer.Option("", "--hostname", help="Container host name"),
    user: str = typer.Option("", "--user", help="Username or UID"),
    workdir: str = typer.Option("", "-w", "--workdir", help="Working directory inside the container"),
    entrypoint: str | None = typer.Option(None, "--entrypoint", help="Override the image ENTRYPOINT"),
    init: bool | None = typer.Option(None, "--init/--no-init", help="Run an init inside the container"),
    read_only: bool = typer.Option(False, "--read-only", help="Mount the root filesystem read-only"),
) -> None:
    """Create an agent container and run it (or just create it)."""
    opts = ContainerOptions(
        image=image,
        command=list(command or []),
        agent=agent,
        name=name,
        mode=mode,
        worktree=worktree,
        detach=detach,
        tty=tty,
        stdin=interactive,
        attach=list(attach or []),
        entrypoint=entrypoint,
        workdir=workdir,
        user=user,
        hostname=hostname,
        init=init,
        read_only=read_only,
        auto_remove=rm,
        restart=restart,
        env=list(env or []),
        env_file=list(env_file or []),
        labels=list(label or []),
        label_file=list(label_file or []),
        publish=list(publish or []),
        expose=list(expose or []),
        publish_all=publish_all,
        network=network,
        mac_address=mac_address,
        ip=ip,
        ip6=ip6,
        dns=list(dns or []),
        volumes=list(volume or []),
        tmpfs=list(tmpfs or []),
        memory=memory,
        memory_swap=memory_swap,
        memory_swappiness=memory_swappiness,
        cpus=cpus,
        blkio_weight=blkio_weight,
        oom_score_adj=oom_score_adj,
        pids_limit=pids_limit,
        cap_add=list(cap_add or []),
        cap_drop=list(cap_drop or []),
        privileged=privileged,
        security_opt=list(security_opt or []),
        health_cmd=health_cmd,
        health_interval=health_interval,
        health_timeout=health_timeout,
        health_retries=health_retries,
        health_start_period=health_start_period,
        no_healthcheck=no_healthcheck,
        pid=pid,
        ipc=ipc,
        uts=uts,
        userns=userns,
        cgroupns=cgroupns,
        log_driver=log_driver,
        log_opts=list(log_opt or []),
        annotations=list(annotation or []),
        sysctls=list(sysctl or []),
    )
    create_only = ctx.info_name == "create"
    logger.debug("%s %s (agent=%r)", ctx.info_name, image, opts.agent_name())
    execute(opts, create_only=create_only)


RUN_HELP = "Create and start an agent container, attaching unless --detach is given."
CREATE_HELP = "Create an agent container without starting it and print its ID."


def register(app: typer.Typer) -> None:
    """Register run and create on ``app``."""
    app.command("run", help=RUN_HELP, context_settings=COMMAND_CONTEXT)(run_cmd)
    app.command("create", help=CREATE_HELP, context_settings=COMMAND_CONTEXT)(run_cmd)


register(container_app)
