"""Tests for the host proxy HTTP service."""

import http.client
import socket
import subprocess
import threading
from http.server import ThreadingHTTPServer
from unittest.mock import patch

import pytest
import requests

from clawker.adapters.host_proxy_server import (
    MAX_REQUEST_BODY,
    HostProxyHandler,
    HostProxyManager,
    format_git_credential_input,
    parse_git_credential_output,
)
from clawker.core.constants import HOST_PROXY_SERVICE


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def base_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), HostProxyHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


# ═══════════════════════════════════════════════════════════════════════════════
# Git credential format
# ═══════════════════════════════════════════════════════════════════════════════


class TestGitCredentialFormat:
    def test_input_skips_empty_fields(self):
        text = format_git_credential_input({"protocol": "https", "host": "github.com", "username": ""})
        assert text == "protocol=https\nhost=github.com\n\n"

    def test_output_keeps_known_keys(self):
        parsed = parse_git_credential_output("protocol=https\nhost=github.com\nusername=me\npassword=a=b\nquit=1\n")
        assert parsed == {"protocol": "https", "host": "github.com", "username": "me", "password": "a=b"}


# ═══════════════════════════════════════════════════════════════════════════════
# Endpoints
# ═══════════════════════════════════════════════════════════════════════════════


class TestEndpoints:
    def test_health(self, base_url):
        response = requests.get(f"{base_url}/health", timeout=5)
        assert response.status_code == 200
        assert response.json()["service"] == HOST_PROXY_SERVICE

    def test_unknown_path(self, base_url):
        assert requests.get(f"{base_url}/nope", timeout=5).status_code == 404
        assert requests.post(f"{base_url}/nope", json={}, timeout=5).status_code == 404

    def test_open_url(self, base_url):
        with patch("clawker.adapters.host_proxy_server.webbrowser.open", return_value=True) as mock_open:
            response = requests.post(f"{base_url}/open/url", json={"url": "https://example.com/login"}, timeout=5)

        assert response.status_code == 200
        assert response.json() == {"success": True, "url": "https://example.com/login"}
        mock_open.assert_called_once_with("https://example.com/login")

    def test_open_url_rejects_other_schemes(self, base_url):
        with patch("clawker.adapters.host_proxy_server.webbrowser.open") as mock_open:
            response = requests.post(f"{base_url}/open/url", json={"url": "file:///etc/passwd"}, timeout=5)

        assert response.status_code == 400
        mock_open.assert_not_called()

    def test_invalid_json(self, base_url):
        response = requests.post(f"{base_url}/open/url", data=b"[1, 2]", timeout=5)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid JSON request body"

    def test_body_too_large(self, base_url):
        conn = http.client.HTTPConnection(base_url.removeprefix("http://"), timeout=5)
        conn.request(
            "POST", "/open/url", body=b"x", headers={"Content-Length": str(MAX_REQUEST_BODY + 1)}
        )
        response = conn.getresponse()
        conn.close()
        assert response.status == 413

    def test_git_credential_get(self, base_url):
        completed = subprocess.CompletedProcess(
            args=[], returncode=0, stdout="protocol=https\nhost=github.com\nusername=me\npassword=tok\n", stderr=""
        )
        with patch("clawker.adapters.host_proxy_server.subprocess.run", return_value=completed) as mock_run:
            response = requests.post(
                f"{base_url}/git/credential",
                json={"action": "get", "protocol": "https", "host": "github.com"},
                timeout=5,
            )

        assert response.json() == {
            "success": True,
            "protocol": "https",
            "host": "github.com",
            "username": "me",
            "password": "tok",
        }
        assert mock_run.call_args.args[0] == ["git", "credential", "fill"]

    def test_git_credential_bad_action(self, base_url):
        response = requests.post(
            f"{base_url}/git/credential", json={"action": "list", "protocol": "https", "host": "x"}, timeout=5
        )
        assert response.status_code == 400

    def test_git_credential_helper_failure(self, base_url):
        completed = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="no helper")
        with patch("clawker.adapters.host_proxy_server.subprocess.run", return_value=completed):
            response = requests.post(
                f"{base_url}/git/credential",
                json={"action": "store", "protocol": "https", "host": "github.com"},
                timeout=5,
            )
        assert response.status_code == 200
        assert response.json() == {"success": False, "error": "credential helper failed: no helper"}


# ═══════════════════════════════════════════════════════════════════════════════
# Manager
# ═══════════════════════════════════════════════════════════════════════════════


class TestHostProxyManager:
    def test_start_then_reuse_from_another_manager(self):
        port = _free_port()
        first = HostProxyManager(port=port)
        second = HostProxyManager(port=port)
        try:
            first.ensure_running()
            assert first.is_running()

            second.ensure_running()
            assert second.is_running()
            assert second._servers == []
            assert second.proxy_url() == f"http://host.docker.internal:{port}"
        finally:
            first.stop()
        assert not first.is_running()
