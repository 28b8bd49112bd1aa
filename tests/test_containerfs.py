"""Tests for staging host Claude Code state and building container tars."""

import io
import json
import stat
import tarfile

import pytest

from clawker.containerfs import (
    ONBOARDING_CONTENT,
    POST_INIT_RELPATH,
    load_credentials,
    onboarding_tar,
    post_init_tar,
    prepare_claude_config,
    resolve_host_config_dir,
    stage_credentials,
)
from clawker.core.constants import CONTAINER_PLUGINS_DIR, CONTAINER_UID, KEYCHAIN_SERVICE
from clawker.core.errors import (
    ConfigError,
    CredentialExpiredError,
    CredentialNotFoundError,
    KeychainError,
    ValidationError,
)
from tests.fakes.fake_collaborators import FakeKeychain

NOW_MS = 1_700_000_000_000


def _creds(expires_at: int = NOW_MS + 60_000) -> dict:
    return {"claudeAiOauth": {"accessToken": "tok", "expiresAt": expires_at}}


def _members(archive: bytes) -> dict[str, tarfile.TarInfo]:
    with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
        return {m.name: m for m in tar.getmembers()}


# ═══════════════════════════════════════════════════════════════════════════════
# Host config directory
# ═══════════════════════════════════════════════════════════════════════════════


class TestResolveHostConfigDir:
    def test_default_home_dir(self, isolated_home):
        (isolated_home / ".claude").mkdir()
        assert resolve_host_config_dir() == isolated_home / ".claude"

    def test_override_must_exist(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(tmp_path / "missing"))
        with pytest.raises(ConfigError, match="does not exist"):
            resolve_host_config_dir()

    def test_override_must_be_directory(self, monkeypatch, tmp_path):
        target = tmp_path / "file"
        target.touch()
        monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(target))
        with pytest.raises(ConfigError, match="not a directory"):
            resolve_host_config_dir()

    def test_nothing_found(self):
        with pytest.raises(ConfigError, match="not found on host"):
            resolve_host_config_dir()


# ═══════════════════════════════════════════════════════════════════════════════
# Config staging
# ═══════════════════════════════════════════════════════════════════════════════


class TestPrepareClaudeConfig:
    @pytest.fixture
    def host_dir(self, tmp_path):
        host = tmp_path / "host-claude"
        (host / "agents").mkdir(parents=True)
        (host / "agents" / "reviewer.md").write_text("# reviewer\n")
        (host / "settings.json").write_text(
            json.dumps({"enabledPlugins": {"fmt@market": True}, "model": "opus", "hooks": {}})
        )
        return host

    def test_settings_reduced_to_enabled_plugins(self, host_dir, tmp_path):
        staged = prepare_claude_config(host_dir, tmp_path / "stage", "/workspace")

        assert json.loads((staged / "settings.json").read_text()) == {"enabledPlugins": {"fmt@market": True}}
        assert (staged / "agents" / "reviewer.md").read_text() == "# reviewer\n"
        assert not (staged / "skills").exists()

    def test_settings_without_plugins_skipped(self, host_dir, tmp_path):
        (host_dir / "settings.json").write_text(json.dumps({"model": "opus"}))
        staged = prepare_claude_config(host_dir, tmp_path / "stage", "/workspace")
        assert not (staged / "settings.json").exists()

    def test_invalid_settings_json(self, host_dir, tmp_path):
        (host_dir / "settings.json").write_text("{not json")
        with pytest.raises(ConfigError, match="Cannot parse"):
            prepare_claude_config(host_dir, tmp_path / "stage", "/workspace")

    def test_plugin_paths_rewritten(self, host_dir, tmp_path):
        plugins = host_dir / "plugins"
        plugins.mkdir()
        (plugins / "install-counts-cache.json").write_text("{}")
        (plugins / "known_marketplaces.json").write_text(
            json.dumps({"market": {"installLocation": f"{plugins}/marketplaces/market"}})
        )
        (plugins / "installed_plugins.json").write_text(
            json.dumps(
                {
                    "plugins": {
                        "fmt@market": [
                            {"installPath": f"{plugins}/cache/fmt", "projectPath": "/home/me/code/app"},
                            {"installPath": "/elsewhere/fmt"},
                        ]
                    }
                }
            )
        )

        staged = prepare_claude_config(host_dir, tmp_path / "stage", "/workspace")

        assert not (staged / "plugins" / "install-counts-cache.json").exists()
        markets = json.loads((staged / "plugins" / "known_marketplaces.json").read_text())
        assert markets["market"]["installLocation"] == f"{CONTAINER_PLUGINS_DIR}/marketplaces/market"
        installed = json.loads((staged / "plugins" / "installed_plugins.json").read_text())
        first, second = installed["plugins"]["fmt@market"]
        assert first == {"installPath": f"{CONTAINER_PLUGINS_DIR}/cache/fmt", "projectPath": "/workspace"}
        assert second == {"installPath": "/elsewhere/fmt"}

    def test_symlinked_directory_copied_as_content(self, host_dir, tmp_path):
        real = tmp_path / "dotfiles-skills"
        real.mkdir()
        (real / "deploy.md").write_text("deploy\n")
        (host_dir / "skills").symlink_to(real)

        staged = prepare_claude_config(host_dir, tmp_path / "stage", "/workspace")

        assert not (staged / "skills").is_symlink()
        assert (staged / "skills" / "deploy.md").read_text() == "deploy\n"


# ═══════════════════════════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════════════════════════


class TestLoadCredentials:
    def test_keychain_first(self, tmp_path):
        keychain = FakeKeychain(json.dumps(_creds()))
        (tmp_path / ".credentials.json").write_text(json.dumps({"claudeAiOauth": {"accessToken": "file"}}))

        creds = load_credentials(keychain, tmp_path, now_ms=NOW_MS)

        assert creds["claudeAiOauth"]["accessToken"] == "tok"
        assert keychain.lookups[0][0] == KEYCHAIN_SERVICE

    def test_file_fallback(self, tmp_path):
        (tmp_path / ".credentials.json").write_text(json.dumps(_creds()))
        creds = load_credentials(FakeKeychain(None), tmp_path, now_ms=NOW_MS)
        assert creds == _creds()

    def test_expired(self):
        with pytest.raises(CredentialExpiredError):
            load_credentials(FakeKeychain(json.dumps(_creds(NOW_MS - 1))), None, now_ms=NOW_MS)

    def test_malformed_keychain_secret(self):
        with pytest.raises(KeychainError, match="not valid JSON"):
            load_credentials(FakeKeychain("{"), None, now_ms=NOW_MS)

    def test_empty_access_token(self):
        with pytest.raises(CredentialNotFoundError, match="empty"):
            load_credentials(FakeKeychain(json.dumps({"claudeAiOauth": {}})), None, now_ms=NOW_MS)

    def test_nothing_anywhere(self, tmp_path):
        with pytest.raises(CredentialNotFoundError):
            load_credentials(FakeKeychain(None), tmp_path, now_ms=NOW_MS)

    def test_staged_file_is_private(self, tmp_path):
        claude_dir = stage_credentials(_creds(), tmp_path)

        target = claude_dir / ".credentials.json"
        assert stat.S_IMODE(target.stat().st_mode) == 0o600
        assert json.loads(target.read_text()) == _creds()


# ═══════════════════════════════════════════════════════════════════════════════
# Tar archives
# ═══════════════════════════════════════════════════════════════════════════════


class TestArchives:
    def test_onboarding_marker(self):
        members = _members(onboarding_tar())

        marker = members[".claude.json"]
        assert marker.uid == CONTAINER_UID
        assert marker.mode == 0o600
        with tarfile.open(fileobj=io.BytesIO(onboarding_tar())) as tar:
            assert tar.extractfile(".claude.json").read() == ONBOARDING_CONTENT

    def test_post_init_script(self):
        archive = post_init_tar("npm install\n")
        members = _members(archive)

        assert members[".clawker"].isdir()
        script = members[POST_INIT_RELPATH]
        assert script.mode == 0o755
        with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
            assert tar.extractfile(POST_INIT_RELPATH).read() == b"#!/bin/bash\nset -e\nnpm install\n"

    def test_blank_post_init_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            post_init_tar("  \n")
