"""
Socket bridge: forward host SSH/GPG agent sockets into a container.

The bridge runs as a detached ``clawker bridge serve`` daemon per container.
It drives ``docker exec -i <container> clawker-socket-server`` and speaks a
framed protocol over the exec stdin/stdout:

    uint32 length (big-endian) | uint8 type | uint32 stream id | payload

``length`` covers type, stream id and payload. The in-container server
sends OPEN when a client connects to one of its agent sockets; the bridge
dials the matching host socket and relays DATA both ways until CLOSE.
"""

from __future__ import annotations

import logging
import os
import signal
import socket
import struct
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from clawker import config as clawker_config
from clawker.core.constants import SOCKET_SERVER_PATH
from clawker.core.errors import SocketBridgeError
from clawker.kinds import SocketType
from clawker.ports.socket_bridge import SocketBridgeManager
from clawker.workspace import gpg_extra_socket_path

logger = logging.getLogger(__name__)

MSG_DATA = 1
MSG_OPEN = 2
MSG_CLOSE = 3
MSG_PUBKEY = 4
MSG_READY = 5
MSG_ERROR = 6

HEADER_SIZE = 5
MAX_MESSAGE_SIZE = 1 << 20
READY_TIMEOUT_SECONDS = 10.0
PID_FILE_TIMEOUT_SECONDS = 5.0
_HOST_READ_CHUNK = 64 * 1024


def short_id(container_id: str) -> str:
    return container_id[:12]


# ═══════════════════════════════════════════════════════════════════════════════
# Wire protocol
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Message:
    """One protocol frame."""

    type: int
    stream_id: int = 0
    payload: bytes = b""


def encode_message(msg: Message) -> bytes:
    return struct.pack(">IBI", HEADER_SIZE + len(msg.payload), msg.type, msg.stream_id) + msg.payload


def _read_exact(stream: BinaryIO, size: int) -> bytes | None:
    buf = b""
    while len(buf) < size:
        chunk = stream.read(size - len(buf))
        if not chunk:
            return None
        buf += chunk
    return buf


def read_message(stream: BinaryIO) -> Message | None:
    """Read one frame; return None on a clean EOF between frames.

    Raises:
        SocketBridgeError: If the frame length is out of bounds or the
            stream ends mid-frame.
    """
    prefix = _read_exact(stream, 4)
    if prefix is None:
        return None
    (length,) = struct.unpack(">I", prefix)
    if length < HEADER_SIZE:
        raise SocketBridgeError(user_message=f"message too short: {length}")
    if length > MAX_MESSAGE_SIZE:
        raise SocketBridgeError(user_message=f"message too large: {length}")
    body = _read_exact(stream, length)
    if body is None:
        raise SocketBridgeError(user_message="stream ended mid-message")
    msg_type, stream_id = struct.unpack(">BI", body[:HEADER_SIZE])
    return Message(type=msg_type, stream_id=stream_id, payload=body[HEADER_SIZE:])


def host_gpg_pubkey() -> bytes:
    """Return ``gpg --export`` output for the container keyring.

    Raises:
        SocketBridgeError: If gpg fails or exports nothing.
    """
    try:
        result = subprocess.run(["gpg", "--export"], capture_output=True, timeout=30)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise SocketBridgeError(user_message=f"gpg --export failed: {e}") from e
    if result.returncode != 0:
        raise SocketBridgeError(
            user_message=f"gpg --export failed: {result.stderr.decode(errors='replace').strip()}"
        )
    if not result.stdout:
        raise SocketBridgeError(user_message="no GPG public keys found")
    return result.stdout


def host_socket_path(socket_type: str) -> str | None:
    if socket_type == SocketType.SSH_AGENT.value:
        return os.environ.get("SSH_AUTH_SOCK") or None
    if socket_type == SocketType.GPG_AGENT.value:
        return gpg_extra_socket_path()
    return None


# ═══════════════════════════════════════════════════════════════════════════════
# Bridge (daemon side)
# ═══════════════════════════════════════════════════════════════════════════════


class Bridge:
    """Relay between the in-container socket server and host agent sockets."""

    def __init__(self, container_id: str, gpg_enabled: bool, pubkey: bytes | None = None) -> None:
        self.container_id = container_id
        self.gpg_enabled = gpg_enabled
        self._pubkey = pubkey
        self._proc: subprocess.Popen[bytes] | None = None
        self._streams: dict[int, socket.socket] = {}
        self._streams_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._ready = threading.Event()
        self._start_error: str | None = None
        self._stopped = threading.Event()
        self._reader: threading.Thread | None = None

    def command(self) -> list[str]:
        return ["docker", "exec", "-i", self.container_id, SOCKET_SERVER_PATH]

    def start(self, timeout: float = READY_TIMEOUT_SECONDS) -> None:
        """Start the exec session and wait for the server's READY.

        Raises:
            SocketBridgeError: If the server reports an error or never gets ready.
        """
        if self.gpg_enabled and not self._pubkey:
            self._pubkey = host_gpg_pubkey()

        try:
            self._proc = subprocess.Popen(
                self.command(), stdin=subprocess.PIPE, stdout=subprocess.PIPE
            )
        except OSError as e:
            raise SocketBridgeError(user_message=f"failed to start socket server: {e}") from e

        if self.gpg_enabled:
            self.send(Message(MSG_PUBKEY, 0, self._pubkey or b""))

        self._reader = threading.Thread(target=self._read_loop, name="bridge-reader", daemon=True)
        self._reader.start()

        if not self._ready.wait(timeout):
            raise SocketBridgeError(user_message=self._start_error or "socket server did not become ready")
        if self._start_error:
            raise SocketBridgeError(user_message=f"forwarder error: {self._start_error}")

    def wait(self) -> int:
        """Block until the exec session ends; return its exit status."""
        if self._reader is not None:
            self._reader.join()
        if self._proc is None:
            return 0
        return self._proc.wait()

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        with self._streams_lock:
            streams = list(self._streams.values())
            self._streams.clear()
        for conn in streams:
            conn.close()
        if self._proc is not None:
            if self._proc.stdin is not None:
                try:
                    self._proc.stdin.close()
                except OSError as e:
                    logger.debug("closing exec stdin: %s", e)
            if self._proc.poll() is None:
                self._proc.kill()

    def send(self, msg: Message) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise SocketBridgeError(user_message="bridge is not started")
        with self._write_lock:
            self._proc.stdin.write(encode_message(msg))
            self._proc.stdin.flush()

    # ─────────────────────────────────────────────────────────────────────────

    def _read_loop(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        try:
            while not self._stopped.is_set():
                msg = read_message(self._proc.stdout)
                if msg is None:
                    break
                self.handle(msg)
        except (SocketBridgeError, OSError) as e:
            logger.debug("bridge read error: %s", e)
        finally:
            if not self._ready.is_set():
                self._start_error = self._start_error or "socket server exited before ready"
                self._ready.set()

    def handle(self, msg: Message) -> None:
        if msg.type == MSG_READY:
            self._ready.set()
        elif msg.type == MSG_ERROR:
            text = msg.payload.decode(errors="replace")
            logger.error("socket server error: %s", text)
            if not self._ready.is_set():
                self._start_error = text
                self._ready.set()
        elif msg.type == MSG_OPEN:
            self._open_stream(msg.stream_id, msg.payload.decode(errors="replace"))
        elif msg.type == MSG_DATA:
            with self._streams_lock:
                conn = self._streams.get(msg.stream_id)
            if conn is None:
                return
            try:
                conn.sendall(msg.payload)
            except OSError:
                self._close_stream(msg.stream_id)
        elif msg.type == MSG_CLOSE:
            self._close_stream(msg.stream_id)

    def _open_stream(self, stream_id: int, socket_type: str) -> None:
        path = host_socket_path(socket_type)
        if path is None:
            logger.error("no host socket for %s", socket_type)
            self.send(Message(MSG_CLOSE, stream_id))
            return
        conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            conn.connect(path)
        except OSError as e:
            logger.error("failed to connect to host socket %s: %s", path, e)
            conn.close()
            self.send(Message(MSG_CLOSE, stream_id))
            return
        with self._streams_lock:
            self._streams[stream_id] = conn
        threading.Thread(
            target=self._pump_host, args=(stream_id, conn), name=f"bridge-stream-{stream_id}", daemon=True
        ).start()
        logger.debug("opened %s stream %d", socket_type, stream_id)

    def _pump_host(self, stream_id: int, conn: socket.socket) -> None:
        while True:
            try:
                data = conn.recv(_HOST_READ_CHUNK)
            except OSError:
                data = b""
            if not data:
                self._close_stream(stream_id)
                return
            try:
                self.send(Message(MSG_DATA, stream_id, data))
            except (OSError, SocketBridgeError):
                self._close_stream(stream_id)
                return

    def _close_stream(self, stream_id: int) -> None:
        with self._streams_lock:
            conn = self._streams.pop(stream_id, None)
        if conn is None:
            return
        conn.close()
        try:
            self.send(Message(MSG_CLOSE, stream_id))
        except (OSError, SocketBridgeError) as e:
            logger.debug("sending CLOSE for stream %d: %s", stream_id, e)


# ═══════════════════════════════════════════════════════════════════════════════
# Manager (CLI side)
# ═══════════════════════════════════════════════════════════════════════════════


def read_pid_file(path: Path) -> int:
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return 0


def is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def terminate_process(pid: int) -> None:
    try:
        os.kill(pid, signal.SIGTERM)
    except OSError as e:
        logger.debug("SIGTERM to bridge %d failed: %s", pid, e)


class SocketBridgeProcessManager(SocketBridgeManager):
    """Spawn and track one detached bridge daemon per container."""

    def __init__(self, executable: list[str] | None = None) -> None:
        self._executable = executable or [sys.executable, "-m", "clawker"]
        self._lock = threading.Lock()
        self._bridges: dict[str, int] = {}

    def ensure_bridge(self, container_id: str, gpg_enabled: bool) -> None:
        with self._lock:
            pid = self._bridges.get(container_id)
            if pid is not None:
                if is_process_alive(pid):
                    logger.debug("bridge for %s already running (pid %d)", short_id(container_id), pid)
                    return
                self._forget(container_id)

            pid_file = clawker_config.bridge_pid_file(container_id)
            existing = read_pid_file(pid_file)
            if existing and is_process_alive(existing):
                logger.debug("found bridge for %s via PID file", short_id(container_id))
                self._bridges[container_id] = existing
                return

            self._bridges[container_id] = self._spawn(container_id, gpg_enabled, pid_file)

    def stop_bridge(self, container_id: str) -> None:
        with self._lock:
            self._forget(container_id)
            pid_file = clawker_config.bridge_pid_file(container_id)
            pid = read_pid_file(pid_file)
            if pid:
                terminate_process(pid)
            pid_file.unlink(missing_ok=True)

    def stop_all(self) -> None:
        with self._lock:
            for container_id in list(self._bridges):
                self._forget(container_id)
            bridges = clawker_config.bridges_dir()
            if not bridges.is_dir():
                return
            for pid_file in bridges.glob("*.pid"):
                pid = read_pid_file(pid_file)
                if pid:
                    terminate_process(pid)
                pid_file.unlink(missing_ok=True)

    def is_running(self, container_id: str) -> bool:
        with self._lock:
            pid = self._bridges.get(container_id)
            if pid is None:
                pid = read_pid_file(clawker_config.bridge_pid_file(container_id))
            return is_process_alive(pid)

    def _forget(self, container_id: str) -> None:
        pid = self._bridges.pop(container_id, None)
        if pid is not None and is_process_alive(pid):
            terminate_process(pid)
        clawker_config.bridge_pid_file(container_id).unlink(missing_ok=True)

    def _spawn(self, container_id: str, gpg_enabled: bool, pid_file: Path) -> int:
        pid_file.parent.mkdir(parents=True, exist_ok=True)
        args = [
            *self._executable,
            "bridge",
            "serve",
            "--container",
            container_id,
            "--pid-file",
            str(pid_file),
        ]
        if gpg_enabled:
            args.append("--gpg")

        log_dir = clawker_config.logs_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        with open(log_dir / f"bridge-{short_id(container_id)}.log", "ab") as log:
            try:
                proc = subprocess.Popen(
                    args,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=log,
                    start_new_session=True,
                )
            except OSError as e:
                raise SocketBridgeError(user_message=f"failed to start bridge daemon: {e}") from e
        logger.debug("started bridge for %s (pid %d)", short_id(container_id), proc.pid)

        deadline = time.monotonic() + PID_FILE_TIMEOUT_SECONDS
        while time.monotonic() < deadline:
            if pid_file.exists():
                return proc.pid
            if proc.poll() is not None:
                raise SocketBridgeError(
                    user_message=f"bridge daemon exited with status {proc.returncode}",
                    suggested_action=f"See {log_dir / f'bridge-{short_id(container_id)}.log'}",
                )
            time.sleep(0.1)
        raise SocketBridgeError(user_message=f"bridge started but PID file {pid_file} was not created")
