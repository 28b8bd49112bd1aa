"""Composition root wiring clawker adapters."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from clawker.adapters.docker_runtime_client import DockerRuntimeClient
from clawker.adapters.host_proxy_server import get_host_proxy
from clawker.adapters.keyring_keychain import KeyringKeychain
from clawker.adapters.local_git_client import LocalGitClient
from clawker.adapters.posix_terminal import PosixTerminal
from clawker.adapters.rich_progress import RichProgressDisplay
from clawker.adapters.socket_bridge import SocketBridgeProcessManager
from clawker.ports.git_client import GitClient
from clawker.ports.host_proxy import HostProxyService
from clawker.ports.image_builder import ImageBuilder
from clawker.ports.keychain import Keychain
from clawker.ports.progress import ProgressDisplay
from clawker.ports.runtime_client import RuntimeClient
from clawker.ports.socket_bridge import SocketBridgeManager
from clawker.ports.terminal import Terminal


@dataclass(frozen=True)
class DefaultAdapters:
    """Container for default adapter instances."""

    runtime_client: RuntimeClient
    keychain: Keychain
    host_proxy: HostProxyService
    git_client: GitClient
    terminal: Terminal
    progress: ProgressDisplay
    socket_bridge: SocketBridgeManager
    image_builder: ImageBuilder | None = None


@lru_cache(maxsize=1)
def get_default_adapters() -> DefaultAdapters:
    """Return the default adapter wiring for clawker."""

    return DefaultAdapters(
        runtime_client=DockerRuntimeClient(),
        keychain=KeyringKeychain(),
        host_proxy=get_host_proxy(),
        git_client=LocalGitClient(),
        terminal=PosixTerminal(),
        progress=RichProgressDisplay(),
        socket_bridge=SocketBridgeProcessManager(),
    )
