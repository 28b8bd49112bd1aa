"""One-time seeding of a freshly created config volume."""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from clawker import containerfs
from clawker.config import ClaudeCodeConfig
from clawker.core.constants import CONTAINER_CLAUDE_DIR
from clawker.core.errors import (
    ConfigError,
    CredentialExpiredError,
    CredentialNotFoundError,
    StageError,
)
from clawker.kinds import ClaudeStrategy
from clawker.ports.keychain import Keychain
from clawker.ports.runtime_client import RuntimeClient

logger = logging.getLogger(__name__)


def seed_config_volume(
    runtime: RuntimeClient,
    keychain: Keychain | None,
    *,
    volume: str,
    claude_code: ClaudeCodeConfig,
    workspace_path: str,
) -> list[str]:
    """Copy host config and credentials into a config volume.

    Call only when the volume was created by this run.

    Args:
        runtime: Runtime client used for copy-to-volume.
        keychain: Credential store, or None to use only the file fallback.
        volume: Config volume name.
        claude_code: Seeding policy.
        workspace_path: Workspace path inside the container.

    Returns:
        Warnings for skipped credentials.

    Raises:
        StageError: If staging or copying fails.
    """
    warnings: list[str] = []

    if claude_code.strategy is ClaudeStrategy.COPY:
        try:
            host_dir = containerfs.resolve_host_config_dir()
        except ConfigError as e:
            raise StageError.wrap("cannot copy claude config", e) from e

        with tempfile.TemporaryDirectory(prefix="clawker-config-") as staging:
            claude_dir = containerfs.prepare_claude_config(host_dir, Path(staging), workspace_path)
            runtime.copy_to_volume(volume, claude_dir, CONTAINER_CLAUDE_DIR)
        logger.debug("copied host claude config into %s", volume)

    if claude_code.use_host_auth:
        try:
            host_dir = containerfs.resolve_host_config_dir()
        except ConfigError:
            host_dir = None

        try:
            creds = containerfs.load_credentials(keychain, host_dir)
        except (CredentialNotFoundError, CredentialExpiredError) as e:
            logger.warning("skipping credential seeding: %s", e)
            warnings.append(f"{e.user_message}; sign in inside the container to authenticate")
            return warnings

        with tempfile.TemporaryDirectory(prefix="clawker-creds-") as staging:
            claude_dir = containerfs.stage_credentials(creds, Path(staging))
            runtime.copy_to_volume(volume, claude_dir, CONTAINER_CLAUDE_DIR)
        logger.debug("injected host credentials into %s", volume)

    return warnings
