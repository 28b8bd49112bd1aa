"""
Host proxy: a loopback HTTP service containers call to act on the host.

Endpoints:
- GET  /health          liveness probe, also used to detect a running proxy
- POST /open/url        open an http(s) URL in the host browser
- POST /git/credential  run ``git credential fill|approve|reject`` on the host

One server per process, listening on both loopback families. A proxy
already answering on the port (for example from another clawker process)
is reused instead of started.
"""

from __future__ import annotations

import json
import logging
import socket
import subprocess
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import urlparse

import requests

from clawker.core.constants import HOST_PROXY_PORT, HOST_PROXY_SERVICE
from clawker.core.errors import HostProxyError
from clawker.ports.host_proxy import HostProxyService

logger = logging.getLogger(__name__)

MAX_REQUEST_BODY = 1 << 20
HEALTH_TIMEOUT_SECONDS = 1.0
GIT_CREDENTIAL_ACTIONS = {"get": "fill", "store": "approve", "erase": "reject"}
CONTAINER_PROXY_HOST = "host.docker.internal"


# ═══════════════════════════════════════════════════════════════════════════════
# Git credential helpers
# ═══════════════════════════════════════════════════════════════════════════════


def format_git_credential_input(request: dict[str, Any]) -> str:
    """Render a credential request in git's key=value stdin format."""
    lines = [f"protocol={request['protocol']}", f"host={request['host']}"]
    for key in ("path", "username", "password"):
        if request.get(key):
            lines.append(f"{key}={request[key]}")
    return "\n".join(lines) + "\n\n"


def parse_git_credential_output(output: str) -> dict[str, str]:
    """Parse ``git credential fill`` output into a dict."""
    creds: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep and key in ("protocol", "host", "username", "password"):
            creds[key] = value
    return creds


# ═══════════════════════════════════════════════════════════════════════════════
# Request handling
# ═══════════════════════════════════════════════════════════════════════════════


class HostProxyHandler(BaseHTTPRequestHandler):
    """Routes proxy requests; every response is JSON."""

    server_version = "clawker-host-proxy"

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("host proxy: " + format, *args)

    def do_GET(self) -> None:
        if self.path == "/health":
            self._write_json(200, {"status": "ok", "service": HOST_PROXY_SERVICE})
            return
        self._write_json(404, {"success": False, "error": "not found"})

    def do_POST(self) -> None:
        routes = {"/open/url": self._open_url, "/git/credential": self._git_credential}
        handler = routes.get(self.path)
        if handler is None:
            self._write_json(404, {"success": False, "error": "not found"})
            return
        body = self._read_json()
        if body is None:
            return
        handler(body)

    # ─────────────────────────────────────────────────────────────────────────

    def _read_json(self) -> dict[str, Any] | None:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = -1
        if length < 0 or length > MAX_REQUEST_BODY:
            self._write_json(413, {"success": False, "error": "request body too large"})
            return None
        try:
            data = json.loads(self.rfile.read(length) or b"null")
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            self._write_json(400, {"success": False, "error": "invalid JSON request body"})
            return None
        return data

    def _write_json(self, status: int, payload: dict[str, Any]) -> None:
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _open_url(self, body: dict[str, Any]) -> None:
        url = body.get("url") or ""
        if not url:
            self._write_json(400, {"success": False, "error": "url field is required"})
            return
        if urlparse(url).scheme not in ("http", "https"):
            self._write_json(400, {"success": False, "error": "only http and https URLs are allowed"})
            return
        logger.debug("opening %s in host browser", url)
        if not webbrowser.open(url):
            self._write_json(500, {"success": False, "url": url, "error": "no browser available"})
            return
        self._write_json(200, {"success": True, "url": url})

    def _git_credential(self, body: dict[str, Any]) -> None:
        action = body.get("action")
        if action not in GIT_CREDENTIAL_ACTIONS:
            self._write_json(
                400, {"success": False, "error": "action must be 'get', 'store', or 'erase'"}
            )
            return
        for required in ("protocol", "host"):
            if not body.get(required):
                self._write_json(400, {"success": False, "error": f"{required} is required"})
                return

        try:
            result = subprocess.run(
                ["git", "credential", GIT_CREDENTIAL_ACTIONS[action]],
                input=format_git_credential_input(body),
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self._write_json(200, {"success": False, "error": f"credential helper failed: {e}"})
            return
        if result.returncode != 0:
            message = result.stderr.strip() or f"exit status {result.returncode}"
            logger.debug("git credential %s failed for %s: %s", action, body["host"], message)
            self._write_json(200, {"success": False, "error": f"credential helper failed: {message}"})
            return

        if action == "get":
            creds = parse_git_credential_output(result.stdout)
            self._write_json(200, {"success": True, **creds})
            return
        self._write_json(200, {"success": True})


class _IPv6Server(ThreadingHTTPServer):
    address_family = socket.AF_INET6


# ═══════════════════════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════════════════════


class HostProxyManager(HostProxyService):
    """Process-wide owner of the host proxy listeners."""

    def __init__(self, port: int = HOST_PROXY_PORT) -> None:
        self._port = port
        self._lock = threading.Lock()
        self._servers: list[ThreadingHTTPServer] = []
        self._reusing = False

    def ensure_running(self) -> None:
        with self._lock:
            if self._servers or self._reusing:
                return
            if self._probe():
                logger.debug("reusing host proxy already serving on port %d", self._port)
                self._reusing = True
                return
            self._start()

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._servers) or self._reusing

    def proxy_url(self) -> str:
        return f"http://{CONTAINER_PROXY_HOST}:{self._port}"

    def stop(self) -> None:
        with self._lock:
            for server in self._servers:
                server.shutdown()
                server.server_close()
            self._servers = []
            self._reusing = False

    def _probe(self) -> bool:
        try:
            response = requests.get(
                f"http://127.0.0.1:{self._port}/health", timeout=HEALTH_TIMEOUT_SECONDS
            )
        except requests.RequestException:
            return False
        if response.status_code != 200:
            return False
        try:
            return response.json().get("service") == HOST_PROXY_SERVICE
        except ValueError:
            return False

    def _start(self) -> None:
        attempts = ((ThreadingHTTPServer, "127.0.0.1"), (_IPv6Server, "::1"))
        errors = []
        for server_cls, host in attempts:
            try:
                server = server_cls((host, self._port), HostProxyHandler)
            except OSError as e:
                logger.debug("host proxy cannot listen on %s:%d: %s", host, self._port, e)
                errors.append(f"{host}: {e}")
                continue
            server.daemon_threads = True
            thread = threading.Thread(
                target=server.serve_forever, name=f"clawker-host-proxy-{host}", daemon=True
            )
            thread.start()
            self._servers.append(server)

        if not self._servers:
            raise HostProxyError(
                user_message=f"Host proxy failed to listen on port {self._port}",
                debug_context="; ".join(errors),
            )
        logger.info("host proxy listening on port %d", self._port)


_manager: HostProxyManager | None = None
_manager_lock = threading.Lock()


def get_host_proxy() -> HostProxyManager:
    """Return the process-wide host proxy manager."""
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = HostProxyManager()
        return _manager
