"""
Stage host Claude Code state for injection into agent containers.

Two kinds of payload are produced here:
- Staged directory trees copied into the config volume on first boot
  (host config subset, credentials)
- Tar archives extracted into a created-but-not-started container
  (onboarding marker, post-init script)

Nothing in this module talks to the daemon; callers hand the staged paths
and archives to the runtime client.
"""

from __future__ import annotations

import getpass
import io
import json
import logging
import os
import shutil
import tarfile
import time
from pathlib import Path
from typing import Any

from .core.constants import (
    CLAUDE_CONFIG_DIR_ENV,
    CONTAINER_GID,
    CONTAINER_PLUGINS_DIR,
    CONTAINER_UID,
    KEYCHAIN_SERVICE,
)
from .core.errors import (
    ConfigError,
    CredentialExpiredError,
    CredentialNotFoundError,
    KeychainError,
    ValidationError,
)
from .ports.keychain import Keychain

logger = logging.getLogger(__name__)

CREDENTIALS_FILENAME = ".credentials.json"
ONBOARDING_FILENAME = ".claude.json"
POST_INIT_RELPATH = ".clawker/post-init.sh"
ONBOARDING_CONTENT = b'{"hasCompletedOnboarding":true}\n'

_STAGED_DIRS = ("agents", "skills", "commands")
_SKIPPED_PLUGIN_FILES = frozenset({"install-counts-cache.json"})


# ═══════════════════════════════════════════════════════════════════════════════
# Host config directory
# ═══════════════════════════════════════════════════════════════════════════════


def resolve_host_config_dir() -> Path:
    """Return the host Claude config dir ($CLAUDE_CONFIG_DIR or ~/.claude).

    Raises:
        ConfigError: If the override is invalid or no config dir exists.
    """
    override = os.environ.get(CLAUDE_CONFIG_DIR_ENV)
    if override:
        path = Path(override).expanduser()
        if not path.exists():
            raise ConfigError(
                user_message=f"{CLAUDE_CONFIG_DIR_ENV} is set to {override} but the path does not exist",
                path=override,
            )
        if not path.is_dir():
            raise ConfigError(
                user_message=f"{CLAUDE_CONFIG_DIR_ENV} is set to {override} but the path is not a directory",
                path=override,
            )
        return path

    default = Path.home() / ".claude"
    if default.is_dir():
        return default

    raise ConfigError(
        user_message="Claude config dir not found on host: checked $CLAUDE_CONFIG_DIR and ~/.claude/",
        suggested_action="Run Claude Code on the host once, or set agent.claude_code.strategy: fresh",
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Config staging
# ═══════════════════════════════════════════════════════════════════════════════


def prepare_claude_config(host_dir: Path, staging_root: Path, workspace_path: str) -> Path:
    """Stage the subset of host config an agent needs under staging_root/.claude.

    Args:
        host_dir: Host Claude config directory.
        staging_root: Empty scratch directory owned by the caller.
        workspace_path: Workspace path inside the container, substituted for
            plugin project paths.

    Returns:
        The staged .claude directory.
    """
    claude_dir = staging_root / ".claude"
    claude_dir.mkdir(parents=True, exist_ok=True)

    _stage_settings(host_dir, claude_dir)
    for name in _STAGED_DIRS:
        _stage_directory(host_dir / name, claude_dir / name)
    _stage_plugins(host_dir, claude_dir, workspace_path)
    return claude_dir


def _stage_settings(host_dir: Path, claude_dir: Path) -> None:
    """Copy settings.json reduced to its enabledPlugins key."""
    src = host_dir / "settings.json"
    if not src.is_file():
        logger.debug("%s not found, skipping", src)
        return
    try:
        settings = json.loads(src.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(user_message=f"Cannot parse {src}: {e}", path=str(src)) from e

    if not isinstance(settings, dict) or "enabledPlugins" not in settings:
        logger.debug("settings.json has no enabledPlugins, skipping")
        return

    (claude_dir / "settings.json").write_text(
        json.dumps({"enabledPlugins": settings["enabledPlugins"]}, indent=2)
    )


def _stage_directory(src: Path, dst: Path) -> None:
    if not src.exists():
        logger.debug("%s not found on host, skipping", src)
        return
    # symlinks=False copies link targets, so the volume never holds dangling host links
    shutil.copytree(src.resolve(), dst, symlinks=False, dirs_exist_ok=True)


def _stage_plugins(host_dir: Path, claude_dir: Path, workspace_path: str) -> None:
    src = host_dir / "plugins"
    if not src.exists():
        logger.debug("plugins/ not found on host, skipping")
        return

    resolved = src.resolve()
    dst = claude_dir / "plugins"

    def ignore(directory: str, names: list[str]) -> set[str]:
        if Path(directory) == resolved:
            return {n for n in names if n in _SKIPPED_PLUGIN_FILES}
        return set()

    shutil.copytree(resolved, dst, symlinks=False, ignore=ignore, dirs_exist_ok=True)

    host_prefix = str(host_dir / "plugins")
    marketplaces = dst / "known_marketplaces.json"
    if marketplaces.is_file():
        _rewrite_json_file(
            marketplaces,
            {"installLocation": host_prefix, "installPath": host_prefix},
            {},
        )
    installed = dst / "installed_plugins.json"
    if installed.is_file():
        _rewrite_json_file(installed, {"installPath": host_prefix}, {"projectPath": workspace_path})


def _rewrite_json_file(path: Path, prefix_keys: dict[str, str], replace_keys: dict[str, str]) -> None:
    """Rewrite host paths in a plugin manifest.

    Args:
        path: JSON file, rewritten in place.
        prefix_keys: Key -> host prefix swapped for the container plugins dir.
        replace_keys: Key -> value that replaces the whole string.
    """
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(user_message=f"Cannot parse {path.name}: {e}", path=str(path)) from e

    def walk(value: Any) -> Any:
        if isinstance(value, dict):
            out = {}
            for key, child in value.items():
                if isinstance(child, str) and key in replace_keys:
                    out[key] = replace_keys[key]
                elif isinstance(child, str) and key in prefix_keys:
                    prefix = prefix_keys[key]
                    out[key] = (
                        CONTAINER_PLUGINS_DIR + child[len(prefix) :]
                        if child.startswith(prefix)
                        else child
                    )
                else:
                    out[key] = walk(child)
            return out
        if isinstance(value, list):
            return [walk(item) for item in value]
        return value

    path.write_text(json.dumps(walk(data), indent=2))


# ═══════════════════════════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════════════════════════


def _parse_credentials(raw: str, source: str) -> dict[str, Any]:
    try:
        creds = json.loads(raw)
    except json.JSONDecodeError as e:
        raise KeychainError(
            user_message=f"Claude Code credentials in {source} are not valid JSON",
            debug_context=str(e),
        ) from e
    if not isinstance(creds, dict):
        raise KeychainError(user_message=f"Claude Code credentials in {source} are malformed")
    return creds


def _check_credentials(creds: dict[str, Any], now_ms: int) -> None:
    oauth = creds.get("claudeAiOauth")
    if not isinstance(oauth, dict) or not oauth.get("accessToken"):
        raise CredentialNotFoundError(user_message="Claude Code credentials are empty")
    expires_at = oauth.get("expiresAt")
    if isinstance(expires_at, int | float) and expires_at and expires_at < now_ms:
        raise CredentialExpiredError()


def load_credentials(
    keychain: Keychain | None, host_dir: Path | None, *, now_ms: int | None = None
) -> dict[str, Any]:
    """Load host credentials: keychain first, then <host_dir>/.credentials.json.

    Args:
        keychain: Keychain port, or None to go straight to the file.
        host_dir: Host Claude config dir for the file fallback.
        now_ms: Current time in epoch milliseconds, for tests.

    Returns:
        The parsed credentials object.

    Raises:
        CredentialNotFoundError: Neither source has a usable credential.
        CredentialExpiredError: The credential found has expired.
        KeychainError: The credential found is malformed.
    """
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms

    if keychain is not None:
        try:
            raw = keychain.get(KEYCHAIN_SERVICE, getpass.getuser())
        except KeychainError as e:
            logger.debug("keychain credentials unavailable, trying file: %s", e)
        else:
            creds = _parse_credentials(raw, "the keychain")
            _check_credentials(creds, now_ms)
            logger.debug("credentials sourced from keychain")
            return creds

    if host_dir is not None:
        path = host_dir / CREDENTIALS_FILENAME
        try:
            raw = path.read_text()
        except FileNotFoundError:
            raw = ""
        except OSError as e:
            raise KeychainError(user_message=f"Cannot read {path}: {e.strerror or e}") from e
        if raw.strip():
            creds = _parse_credentials(raw, str(path))
            _check_credentials(creds, now_ms)
            logger.debug("credentials sourced from %s", path)
            return creds

    raise CredentialNotFoundError(
        suggested_action=(
            "Authenticate on the host first or set agent.claude_code.use_host_auth: false"
        )
    )


def stage_credentials(creds: dict[str, Any], staging_root: Path) -> Path:
    """Write credentials to staging_root/.claude/.credentials.json (mode 0600).

    Returns:
        The staged .claude directory.
    """
    claude_dir = staging_root / ".claude"
    claude_dir.mkdir(parents=True, exist_ok=True)
    target = claude_dir / CREDENTIALS_FILENAME
    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        json.dump(creds, f)
    return claude_dir


# ═══════════════════════════════════════════════════════════════════════════════
# Tar archives
# ═══════════════════════════════════════════════════════════════════════════════


def _tar_info(name: str, mode: int, *, size: int = 0, directory: bool = False) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.mode = mode
    info.size = size
    info.uid = CONTAINER_UID
    info.gid = CONTAINER_GID
    info.mtime = int(time.time())
    if directory:
        info.type = tarfile.DIRTYPE
    return info


def onboarding_tar() -> bytes:
    """Return a tar holding .claude.json, for extraction at the container home."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        tar.addfile(
            _tar_info(ONBOARDING_FILENAME, 0o600, size=len(ONBOARDING_CONTENT)),
            io.BytesIO(ONBOARDING_CONTENT),
        )
    return buf.getvalue()


def post_init_tar(script: str) -> bytes:
    """Return a tar holding .clawker/post-init.sh, for extraction at the container home.

    The user's script runs under bash with ``set -e``.

    Raises:
        ValidationError: If the script is blank.
    """
    if not script.strip():
        raise ValidationError(user_message="post-init script content is empty", field="agent.post_init")
    content = ("#!/bin/bash\nset -e\n" + script).encode()

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        tar.addfile(_tar_info(".clawker/", 0o755, directory=True))
        tar.addfile(_tar_info(POST_INIT_RELPATH, 0o755, size=len(content)), io.BytesIO(content))
    return buf.getvalue()


def tar_directory(src_dir: Path) -> bytes:
    """Tar the contents of src_dir with entries owned by the container user."""

    def chown(info: tarfile.TarInfo) -> tarfile.TarInfo:
        info.uid = CONTAINER_UID
        info.gid = CONTAINER_GID
        info.uname = info.gname = ""
        return info

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for child in sorted(src_dir.iterdir()):
            tar.add(child, arcname=child.name, filter=chown)
    return buf.getvalue()
