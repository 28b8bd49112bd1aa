"""Shared fixtures: every test runs against a throwaway home directory."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.fakes.fake_collaborators import FakeTerminal
from tests.fakes.fake_runtime_client import FakeRuntimeClient


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME and the clawker home at tmp so nothing touches the real user."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("CLAWKER_CONFIG_DIR", str(home / ".local" / "clawker"))
    monkeypatch.delenv("CLAUDE_CONFIG_DIR", raising=False)
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    return home


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "myapp"
    path.mkdir()
    return path


@pytest.fixture
def runtime() -> FakeRuntimeClient:
    return FakeRuntimeClient()


@pytest.fixture
def terminal() -> FakeTerminal:
    return FakeTerminal()
