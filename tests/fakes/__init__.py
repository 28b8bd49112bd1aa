"""Test fakes for clawker ports."""

from __future__ import annotations

from pathlib import Path

from clawker.bootstrap import DefaultAdapters
from clawker.config import (
    AgentConfig,
    ClaudeCodeConfig,
    FirewallConfig,
    GitCredentialsConfig,
    ProjectConfig,
    SecurityConfig,
    WorkspaceConfig,
)
from clawker.kinds import ClaudeStrategy, WorkspaceMode
from tests.fakes.fake_collaborators import (
    FakeGitClient,
    FakeHostProxy,
    FakeKeychain,
    FakeSocketBridge,
    FakeTerminal,
    RecordingProgress,
)
from tests.fakes.fake_runtime_client import FakeRuntimeClient


def build_fake_adapters(*, terminal: bool = False) -> DefaultAdapters:
    """Return default adapters wired with fakes."""
    return DefaultAdapters(
        runtime_client=FakeRuntimeClient(),
        keychain=FakeKeychain(),
        host_proxy=FakeHostProxy(),
        git_client=FakeGitClient(),
        terminal=FakeTerminal(terminal=terminal),
        progress=RecordingProgress(),
        socket_bridge=FakeSocketBridge(),
    )


def make_project(
    root: Path,
    *,
    project: str = "myapp",
    strategy: ClaudeStrategy = ClaudeStrategy.FRESH,
    use_host_auth: bool = False,
    enable_host_proxy: bool = False,
    post_init: str = "",
    default_mode: WorkspaceMode = WorkspaceMode.BIND,
    forward_ssh: bool = False,
) -> ProjectConfig:
    """Project config with host-touching features off unless asked for."""
    return ProjectConfig(
        project=project,
        root_dir=root,
        workspace=WorkspaceConfig(default_mode=default_mode),
        agent=AgentConfig(
            post_init=post_init,
            claude_code=ClaudeCodeConfig(strategy=strategy, use_host_auth=use_host_auth),
        ),
        security=SecurityConfig(
            enable_host_proxy=enable_host_proxy,
            firewall=FirewallConfig(enable=False),
            git_credentials=GitCredentialsConfig(
                forward_https=True, forward_ssh=forward_ssh, forward_gpg=False, copy_git_config=False
            ),
        ),
    )
