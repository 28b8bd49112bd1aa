"""
Attach-then-start for interactive containers.

The attach stream is opened and its pumps are reading before the container
starts, so a short-lived container cannot exit (or be auto-removed) before
its output is captured. After start the TTY is resized twice, one cell
larger and then to the real size, so full-screen programs in the guest
redraw on connect.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass

from clawker.core.errors import (
    ClawkerError,
    ContainerExitError,
    OperationCancelledError,
    StageError,
)
from clawker.core.exit_codes import EXIT_WAIT_FAILED
from clawker.ports.runtime_client import STDERR, HijackedConnection, RuntimeClient
from clawker.ports.socket_bridge import SocketBridgeManager
from clawker.ports.terminal import Terminal

logger = logging.getLogger(__name__)

# Ctrl-P Ctrl-Q, the daemon's default detach sequence
DETACH_KEYS = b"\x10\x11"
EXIT_WAIT_SECONDS = 2.0
_READ_CHUNK = 32 * 1024
_POLL_SECONDS = 0.1


@dataclass(frozen=True)
class AttachOptions:
    """How the caller's terminal connects to the container.

    Args:
        tty: The container was created with a TTY.
        stdin: Forward caller stdin.
        auto_remove: The container is removed on exit; wait for removal.
        forward_ssh: Start the socket bridge for the SSH agent.
        forward_gpg: Start the socket bridge for the GPG agent.
    """

    tty: bool = False
    stdin: bool = False
    auto_remove: bool = False
    forward_ssh: bool = False
    forward_gpg: bool = False


class _Signals:
    """Pump and exit-observer outcomes, delivered to the waiting caller."""

    def __init__(self) -> None:
        self.pump_done = threading.Event()
        self.pump_error: BaseException | None = None
        self.exit: queue.Queue[tuple[int | None, BaseException | None]] = queue.Queue(maxsize=1)
        self.stop = threading.Event()
        self.detached = threading.Event()


def attach_and_start(
    runtime: RuntimeClient,
    terminal: Terminal,
    container_id: str,
    options: AttachOptions,
    *,
    socket_bridge: SocketBridgeManager | None = None,
    warn: Callable[[str], None] | None = None,
    exit_wait_seconds: float = EXIT_WAIT_SECONDS,
) -> None:
    """Attach to a created container, start it and relay I/O until it ends.

    Args:
        runtime: Runtime client.
        terminal: Caller terminal.
        container_id: Created, not yet started, container.
        options: Stream and forwarding settings.
        socket_bridge: Bridge manager; used when SSH or GPG forwarding is on.
        warn: Receives non-fatal incidents such as a bridge failure.
        exit_wait_seconds: How long to wait for an exit status after the
            stream ends before treating the session as detached.

    Raises:
        ContainerExitError: The container exited with a non-zero status.
        StageError: Attach or start failed.
        OperationCancelledError: The caller interrupted the session.
    """
    signals = _Signals()
    bridge_started = False

    with ExitStack() as stack:
        if options.tty and terminal.is_terminal():
            stack.enter_context(terminal.raw_mode())

        try:
            conn = runtime.container_attach(container_id, stdin=options.stdin, tty=options.tty)
        except Exception as e:
            raise StageError.wrap("attaching to container", e) from e
        stack.callback(conn.close)
        stack.callback(signals.stop.set)

        condition = "removed" if options.auto_remove else "next-exit"
        _spawn(_observe_exit, runtime, container_id, condition, signals)
        _spawn(_pump_output, conn, terminal, options.tty, signals)
        if options.stdin:
            _spawn(_pump_input, conn, terminal, options.tty, signals)

        try:
            runtime.container_start(container_id)
        except Exception as e:
            raise StageError.wrap("starting container", e) from e
        logger.debug("started container %s", container_id[:12])

        if socket_bridge is not None and (options.forward_ssh or options.forward_gpg):
            try:
                socket_bridge.ensure_bridge(container_id, options.forward_gpg)
                bridge_started = True
            except Exception as e:
                logger.warning("socket bridge failed for %s: %s", container_id[:12], e)
                if warn is not None:
                    warn(f"Socket bridge failed to start; SSH/GPG forwarding unavailable: {e}")

        if options.tty:
            _resize_tty(runtime, terminal, container_id)
            stack.callback(
                terminal.watch_resize(lambda rows, cols: _safe_resize(runtime, container_id, rows, cols))
            )

        try:
            _await_outcome(signals, exit_wait_seconds)
        except KeyboardInterrupt:
            raise OperationCancelledError() from None
        finally:
            if bridge_started:
                try:
                    socket_bridge.stop_bridge(container_id)
                except Exception as e:
                    logger.debug("stopping socket bridge: %s", e)


# ═══════════════════════════════════════════════════════════════════════════════
# Outcome selection
# ═══════════════════════════════════════════════════════════════════════════════


def _await_outcome(signals: _Signals, exit_wait_seconds: float) -> None:
    while True:
        if signals.pump_done.wait(_POLL_SECONDS):
            if signals.pump_error is not None:
                err = signals.pump_error
                if isinstance(err, ClawkerError):
                    raise err
                raise ClawkerError(user_message=f"attach stream failed: {err}") from err
            try:
                code, error = signals.exit.get(timeout=exit_wait_seconds)
            except queue.Empty:
                logger.debug("no exit status after stream ended; treating as detached")
                return
            _map_exit(code, error, detached=signals.detached.is_set())
            return

        try:
            code, error = signals.exit.get_nowait()
        except queue.Empty:
            continue
        # Let buffered output reach the terminal before returning
        signals.pump_done.wait(exit_wait_seconds)
        _map_exit(code, error, detached=False)
        return


def _map_exit(code: int | None, error: BaseException | None, *, detached: bool) -> None:
    if error is not None:
        if detached:
            return
        raise ClawkerError(
            user_message=f"waiting for container: {error}", exit_code=EXIT_WAIT_FAILED
        ) from error
    if code:
        raise ContainerExitError(code=code)


# ═══════════════════════════════════════════════════════════════════════════════
# Workers
# ═══════════════════════════════════════════════════════════════════════════════


def _spawn(target: Callable[..., None], *args: object) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


def _observe_exit(runtime: RuntimeClient, container_id: str, condition: str, signals: _Signals) -> None:
    try:
        code = runtime.container_wait(container_id, condition=condition)
    except Exception as e:
        signals.exit.put((None, e))
    else:
        signals.exit.put((code, None))


def _pump_output(conn: HijackedConnection, terminal: Terminal, tty: bool, signals: _Signals) -> None:
    try:
        for stream, chunk in conn.read_frames():
            if not tty and stream == STDERR:
                terminal.write_error(chunk)
            else:
                terminal.write_output(chunk)
    except Exception as e:
        if not signals.stop.is_set() and not signals.detached.is_set():
            signals.pump_error = e
    finally:
        signals.pump_done.set()


def _pump_input(conn: HijackedConnection, terminal: Terminal, tty: bool, signals: _Signals) -> None:
    pending = b""
    try:
        while not signals.stop.is_set() and not signals.pump_done.is_set():
            data = terminal.read_input(_READ_CHUNK, timeout=_POLL_SECONDS)
            if data is None:
                continue
            if data == b"":
                conn.close_write()
                return
            if tty:
                data = pending + data
                if DETACH_KEYS in data:
                    head = data[: data.index(DETACH_KEYS)]
                    if head:
                        conn.send(head)
                    signals.detached.set()
                    conn.close()
                    return
                # Hold a trailing Ctrl-P until the next read shows whether Ctrl-Q follows
                pending = b""
                if data.endswith(DETACH_KEYS[:1]):
                    data, pending = data[:-1], data[-1:]
                if not data:
                    continue
            conn.send(data)
    except Exception as e:
        logger.debug("stdin pump stopped: %s", e)


# ═══════════════════════════════════════════════════════════════════════════════
# TTY sizing
# ═══════════════════════════════════════════════════════════════════════════════


def _resize_tty(runtime: RuntimeClient, terminal: Terminal, container_id: str) -> None:
    rows, cols = terminal.get_size()
    if rows <= 0 or cols <= 0:
        return
    _safe_resize(runtime, container_id, rows + 1, cols + 1)
    _safe_resize(runtime, container_id, rows, cols)


def _safe_resize(runtime: RuntimeClient, container_id: str, rows: int, cols: int) -> None:
    try:
        runtime.container_resize(container_id, rows, cols)
    except Exception as e:
        logger.debug("resize %dx%d failed: %s", rows, cols, e)
