"""
Hidden bridge daemon command.

``clawker bridge serve`` is spawned detached by the socket bridge manager,
one process per container. It runs the relay until the exec session ends,
the container dies, or it receives SIGTERM.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from pathlib import Path
from typing import Any

import docker
import typer
from docker.errors import DockerException

from ...adapters.socket_bridge import Bridge, short_id
from ...config import logs_dir
from ...core.errors import ClawkerError
from ...core.exit_codes import EXIT_FAILURE
from ...core.logging import setup_logging

logger = logging.getLogger(__name__)

bridge_app = typer.Typer(
    name="bridge",
    help="Socket bridge daemon (internal).",
    hidden=True,
    no_args_is_help=True,
)


def _watch_container(container_id: str, bridge: Bridge) -> None:
    """Stop the bridge when the container dies."""
    try:
        client = docker.from_env()
        events = client.events(
            decode=True,
            filters={"type": "container", "container": container_id, "event": "die"},
        )
        for event in events:
            logger.info("container %s died (%s)", short_id(container_id), event.get("status"))
            break
    except DockerException as e:
        logger.warning("event watch failed for %s: %s", short_id(container_id), e)
        return
    bridge.stop()


@bridge_app.command("serve")
def serve_cmd(
    container: str = typer.Option(..., "--container", help="Container ID to bridge"),
    pid_file: Path = typer.Option(..., "--pid-file", help="Where to write this process's PID"),
    gpg: bool = typer.Option(False, "--gpg", help="Forward the GPG agent"),
) -> None:
    """Relay agent sockets for one container until it stops."""
    setup_logging(log_file=logs_dir() / f"bridge-{short_id(container)}.log")
    bridge = Bridge(container, gpg_enabled=gpg)

    def on_signal(signum: int, frame: Any) -> None:
        logger.info("bridge %s received signal %d", short_id(container), signum)
        bridge.stop()

    signal.signal(signal.SIGTERM, on_signal)
    signal.signal(signal.SIGINT, on_signal)

    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()))
    try:
        try:
            bridge.start()
        except ClawkerError as e:
            logger.error("bridge %s failed to start: %s", short_id(container), e.user_message)
            bridge.stop()
            raise typer.Exit(EXIT_FAILURE)
        logger.info("bridge %s ready (gpg=%s)", short_id(container), gpg)

        watcher = threading.Thread(
            target=_watch_container, args=(container, bridge), name="bridge-events", daemon=True
        )
        watcher.start()
        status = bridge.wait()
        logger.info("bridge %s exec session ended with status %d", short_id(container), status)
    finally:
        bridge.stop()
        pid_file.unlink(missing_ok=True)
