"""
Container initialization pipeline.

Runs the ordered stages that turn a validated options bag into a created
(and, for detached runs, started) agent container:

    workspace -> config -> environment -> container -> start

The stages run on a worker thread and report progress through a bounded
queue drained by the display on the calling thread. A failure after the
workspace stage rolls back what this run created before the error
reaches the caller.
"""

from __future__ import annotations

import logging
import queue
import random
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path

from clawker import containerfs
from clawker.config import ProjectConfig, parse_workspace_mode
from clawker.container_opts import ContainerOptions, container_labels
from clawker.core.constants import CONTAINER_HOME, HOST_PROXY_ENV_VAR, NETWORK_NAME
from clawker.core.errors import ClawkerError, OperationCancelledError, StageError
from clawker.kinds import StepStatus, VolumeKind, WorkspaceMode
from clawker.mounts import Mount
from clawker.names import ResolvedNames, resolve_names
from clawker.ports.git_client import GitClient
from clawker.ports.host_proxy import HostProxyService
from clawker.ports.keychain import Keychain
from clawker.ports.progress import ProgressDisplay, ProgressStep
from clawker.ports.runtime_client import RuntimeClient
from clawker.ports.socket_bridge import SocketBridgeManager
from clawker.ports.terminal import Terminal
from clawker.runtime_env import RuntimeEnvOptions, merge_env, runtime_env
from clawker.workspace import (
    WorkspaceResult,
    remove_created_volumes,
    setup_git_credentials,
    setup_workspace,
)

from .seed_config import seed_config_volume

logger = logging.getLogger(__name__)

PROGRESS_QUEUE_SIZE = 32
_PUT_POLL_SECONDS = 0.1

HOST_PROXY_WARNING = (
    "Host proxy failed to start. Browser authentication may not work.\n"
    "To disable: set 'security.enable_host_proxy: false' in clawker.yaml"
)


# ═══════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class InitParams:
    """Inputs for one pipeline run.

    Args:
        options: Caller options bag; its image is replaced by ``image``.
        project: Loaded project config.
        image: Resolved image reference.
        start_after_create: Start the container in the pipeline (detached run).
        cwd: Host directory used when the project has no root.
    """

    options: ContainerOptions
    project: ProjectConfig
    image: str
    start_after_create: bool = False
    cwd: Path | None = None


@dataclass
class InitResult:
    """What a successful run produced.

    Invariants:
        - warnings holds every non-fatal incident, in the order it occurred.
        - host_proxy_running is False whenever the proxy env var was not injected.
        - created_volumes lists only volumes this run created; ``discard`` removes them.
    """

    container_id: str
    agent_name: str
    container_name: str
    host_proxy_running: bool = False
    forward_ssh: bool = False
    forward_gpg: bool = False
    warnings: list[str] = field(default_factory=list)
    created_volumes: list[str] = field(default_factory=list)


@dataclass
class _Wiring:
    """Environment stage output consumed by the container stage."""

    env: list[str] = field(default_factory=list)
    mounts: list[Mount] = field(default_factory=list)
    base_env: list[str] = field(default_factory=list)
    host_proxy_running: bool = False
    forward_ssh: bool = False
    forward_gpg: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# Step reporting
# ═══════════════════════════════════════════════════════════════════════════════


class _StepHandle:
    """Lets a stage body mark itself cached or attach a log line."""

    def __init__(self, run: _PipelineRun, step_id: str, name: str) -> None:
        self._run = run
        self.id = step_id
        self.name = name
        self.status = StepStatus.COMPLETE

    def mark_cached(self) -> None:
        self.status = StepStatus.CACHED

    def log(self, line: str) -> None:
        self._run.emit(ProgressStep(self.id, self.name, StepStatus.RUNNING, log_line=line))


class _PipelineRun:
    """Mutable state of one pipeline run, shared by its stages and rollback."""

    def __init__(self, events: queue.Queue[ProgressStep | None] | None, cancel: threading.Event) -> None:
        self.events = events
        self.cancel = cancel
        self.warnings: list[str] = []
        self.created_volumes: list[str] = []
        self.container_id: str | None = None

    def emit(self, step: ProgressStep | None) -> None:
        if self.events is None:
            return
        # The display may have stopped draining after a cancel
        while True:
            try:
                self.events.put(step, timeout=_PUT_POLL_SECONDS)
                return
            except queue.Full:
                if self.cancel.is_set():
                    return

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise OperationCancelledError()

    @contextmanager
    def step(self, step_id: str, name: str) -> Iterator[_StepHandle]:
        self.check_cancelled()
        handle = _StepHandle(self, step_id, name)
        self.emit(ProgressStep(step_id, name, StepStatus.RUNNING))
        try:
            yield handle
        except BaseException as e:
            self.emit(ProgressStep(step_id, name, StepStatus.ERROR, error=str(e)))
            raise
        self.emit(ProgressStep(step_id, name, handle.status))


# ═══════════════════════════════════════════════════════════════════════════════
# Pipeline
# ═══════════════════════════════════════════════════════════════════════════════


class ContainerInitializer:
    """Create agent containers from an options bag.

    Collaborators are injected; the initializer holds no per-run state and
    can be reused.
    """

    def __init__(
        self,
        runtime: RuntimeClient,
        *,
        keychain: Keychain | None = None,
        host_proxy: HostProxyService | None = None,
        git: GitClient | None = None,
        terminal: Terminal | None = None,
        progress: ProgressDisplay | None = None,
        socket_bridge: SocketBridgeManager | None = None,
        rng: random.Random | None = None,
        version: str = "",
    ) -> None:
        self._runtime = runtime
        self._keychain = keychain
        self._host_proxy = host_proxy
        self._git = git
        self._terminal = terminal
        self._progress = progress
        self._socket_bridge = socket_bridge
        self._rng = rng
        self._version = version

    def run(self, params: InitParams, cancel: threading.Event | None = None) -> InitResult:
        """Run the pipeline.

        Names, workspace mode and flags are validated before any daemon call.

        Args:
            params: Pipeline inputs.
            cancel: Set by the caller to stop the run between stages.

        Returns:
            InitResult for the created container.

        Raises:
            ValidationError: If a name, mode or flag is invalid.
            OperationCancelledError: If the run was cancelled.
            ClawkerError: If a stage failed; ``warnings`` carries rollback
                incidents.
        """
        cancel = cancel or threading.Event()
        options = replace(params.options, image=params.image)
        mode = parse_workspace_mode(options.mode) if options.mode else params.project.workspace.default_mode
        kinds = (VolumeKind.CONFIG, VolumeKind.WORKSPACE) if mode is WorkspaceMode.SNAPSHOT else (VolumeKind.CONFIG,)
        names = resolve_names(params.project.project, options.agent_name(), kinds=kinds, rng=self._rng)
        options.validate_flags()

        if self._progress is None:
            return self._execute(_PipelineRun(None, cancel), params, options, names)

        events: queue.Queue[ProgressStep | None] = queue.Queue(maxsize=PROGRESS_QUEUE_SIZE)
        pipeline = _PipelineRun(events, cancel)
        outcome: dict[str, object] = {}

        def work() -> None:
            try:
                outcome["result"] = self._execute(pipeline, params, options, names)
            except BaseException as e:
                outcome["error"] = e
            finally:
                pipeline.emit(None)

        worker = threading.Thread(target=work, name="clawker-init", daemon=True)
        worker.start()
        subtitle = f"{names.container_name} ({params.image})"
        try:
            self._progress.run("Initializing", subtitle, events)
        except KeyboardInterrupt:
            cancel.set()
            worker.join()
            error = outcome.get("error")
            warnings = error.warnings if isinstance(error, ClawkerError) else []
            raise OperationCancelledError(warnings=list(warnings)) from None
        worker.join()

        error = outcome.get("error")
        if error is not None:
            raise error  # type: ignore[misc]
        return outcome["result"]  # type: ignore[return-value]

    # ─────────────────────────────────────────────────────────────────────────
    # Stages
    # ─────────────────────────────────────────────────────────────────────────

    def _execute(
        self,
        run: _PipelineRun,
        params: InitParams,
        options: ContainerOptions,
        names: ResolvedNames,
    ) -> InitResult:
        project = params.project
        try:
            with run.step("workspace", "Prepare workspace"):
                workspace = setup_workspace(
                    self._runtime,
                    self._git,
                    config=project,
                    names=names,
                    mode_override=options.mode or None,
                    worktree=options.worktree,
                    cwd=params.cwd,
                    created_volumes=run.created_volumes,
                )

            with run.step("config", "Initialize config") as step:
                if workspace.config_volume.freshly_created:
                    step.log("Seeding config volume")
                    try:
                        run.warnings.extend(
                            seed_config_volume(
                                self._runtime,
                                self._keychain,
                                volume=workspace.config_volume.name,
                                claude_code=project.agent.claude_code,
                                workspace_path=project.workspace.remote_path,
                            )
                        )
                    except Exception as e:
                        raise StageError.wrap("container init", e) from e
                else:
                    step.mark_cached()

            with run.step("environment", "Setup environment"):
                wiring = self._wire_environment(run, project, names, workspace)

            with run.step("container", f"Create container ({names.container_name})"):
                self._create_container(run, params, options, names, workspace, wiring)

            if params.start_after_create:
                with run.step("start", "Start container"):
                    try:
                        self._runtime.container_start(run.container_id)
                    except Exception as e:
                        raise StageError.wrap("starting container", e) from e
                self._ensure_bridge(run, run.container_id, wiring)

        except BaseException as e:
            self._rollback(run, e)
            raise

        return InitResult(
            container_id=run.container_id,
            agent_name=names.agent,
            container_name=names.container_name,
            host_proxy_running=wiring.host_proxy_running,
            forward_ssh=wiring.forward_ssh,
            forward_gpg=wiring.forward_gpg,
            warnings=run.warnings,
            created_volumes=list(run.created_volumes),
        )

    def _wire_environment(
        self,
        run: _PipelineRun,
        project: ProjectConfig,
        names: ResolvedNames,
        workspace: WorkspaceResult,
    ) -> _Wiring:
        wiring = _Wiring()

        if project.security.enable_host_proxy and self._host_proxy is not None:
            try:
                self._host_proxy.ensure_running()
            except Exception as e:
                logger.warning("host proxy failed to start: %s", e)
                run.warnings.append(HOST_PROXY_WARNING)
            else:
                wiring.host_proxy_running = True
                wiring.env.append(f"{HOST_PROXY_ENV_VAR}={self._host_proxy.proxy_url()}")

        creds = setup_git_credentials(project.security.git_credentials, wiring.host_proxy_running)
        wiring.mounts.extend(creds.mounts)
        wiring.env.extend(creds.env)
        wiring.forward_ssh = creds.forward_ssh
        wiring.forward_gpg = creds.forward_gpg

        firewall = project.security.firewall
        terminal = self._terminal
        env_opts = RuntimeEnvOptions(
            project=names.project,
            agent=names.agent,
            workspace_mode=workspace.mode.value,
            workspace_source=str(workspace.workdir),
            version=self._version,
            editor=project.agent.editor,
            visual=project.agent.visual,
            is_256_color=terminal.supports_256_color() if terminal else False,
            truecolor=terminal.supports_truecolor() if terminal else False,
            firewall_enabled=firewall.enable,
            firewall_domains=firewall.domains(),
            firewall_override=firewall.is_override_mode(),
            firewall_ip_range_sources=list(firewall.ip_range_sources),
            gpg_forwarding=wiring.forward_gpg,
            ssh_forwarding=wiring.forward_ssh,
            agent_env=dict(project.agent.env),
            instruction_env=dict(project.instruction_env),
        )
        wiring.base_env = merge_env(runtime_env(env_opts), wiring.env)
        return wiring

    def _create_container(
        self,
        run: _PipelineRun,
        params: InitParams,
        options: ContainerOptions,
        names: ResolvedNames,
        workspace: WorkspaceResult,
        wiring: _Wiring,
    ) -> None:
        project = params.project
        labels = container_labels(
            project=names.project,
            agent=names.agent,
            version=self._version,
            image=params.image,
            workdir=str(workspace.workdir),
        )
        try:
            request = options.build_configs(
                container_name=names.container_name,
                mounts=workspace.mounts + wiring.mounts,
                project=project,
                base_env=wiring.base_env,
                managed_labels=labels,
            )
        except ClawkerError as e:
            raise StageError.wrap("invalid configuration", e) from e

        try:
            if request.host_config["NetworkMode"] == NETWORK_NAME:
                self._runtime.ensure_network(NETWORK_NAME)
            response = self._runtime.container_create(request)
        except Exception as e:
            raise StageError.wrap("creating container", e) from e
        run.container_id = response.id
        logger.info("created container %s (%s)", names.container_name, response.id[:12])
        run.warnings.extend(f"Warning: {w}" for w in response.warnings if w)

        if project.agent.claude_code.use_host_auth:
            try:
                self._runtime.copy_to_container(response.id, CONTAINER_HOME, containerfs.onboarding_tar())
            except Exception as e:
                raise StageError.wrap("inject onboarding", e) from e

        if project.agent.post_init:
            try:
                archive = containerfs.post_init_tar(project.agent.post_init)
                self._runtime.copy_to_container(response.id, CONTAINER_HOME, archive)
            except Exception as e:
                raise StageError.wrap("inject post-init script", e) from e

    def _ensure_bridge(self, run: _PipelineRun, container_id: str, wiring: _Wiring) -> None:
        if self._socket_bridge is None or not (wiring.forward_ssh or wiring.forward_gpg):
            return
        try:
            self._socket_bridge.ensure_bridge(container_id, wiring.forward_gpg)
        except Exception as e:
            logger.warning("socket bridge failed for %s: %s", container_id[:12], e)
            run.warnings.append(f"Socket bridge failed to start; SSH/GPG forwarding unavailable: {e}")

    # ─────────────────────────────────────────────────────────────────────────
    # Rollback
    # ─────────────────────────────────────────────────────────────────────────

    def discard(self, result: InitResult, error: BaseException) -> None:
        """Roll back a created container whose attach or start failed later.

        Removes the container and the volumes the run created, adding any
        cleanup incident to ``error.warnings``. Warnings already on the
        result are not repeated.
        """
        run = _PipelineRun(None, threading.Event())
        run.container_id = result.container_id
        run.created_volumes = list(result.created_volumes)
        self._rollback(run, error)

    def _rollback(self, run: _PipelineRun, error: BaseException) -> None:
        """Remove what this run created; never replaces the original error."""
        incidents: list[str] = []
        if run.container_id is not None:
            try:
                self._runtime.container_remove(run.container_id, force=True)
                logger.debug("rolled back container %s", run.container_id[:12])
            except Exception as e:
                logger.warning("failed to remove container %s: %s", run.container_id[:12], e)
                incidents.append(f"Failed to remove container {run.container_id[:12]}: {e}")
        if run.created_volumes:
            incidents.extend(remove_created_volumes(self._runtime, run.created_volumes))

        if isinstance(error, ClawkerError):
            error.warnings.extend(run.warnings)
            error.warnings.extend(incidents)
        else:
            for incident in incidents:
                logger.warning("%s", incident)


