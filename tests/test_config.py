"""Tests for project config and user settings loading."""

from pathlib import Path

import pytest

from clawker.config import (
    FirewallConfig,
    clawker_home,
    find_project_config,
    load_project_config,
    load_settings,
    project_config_from_dict,
)
from clawker.core.constants import DEFAULT_FIREWALL_DOMAINS
from clawker.core.errors import ConfigError, ValidationError
from clawker.kinds import ClaudeStrategy, WorkspaceMode


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestDiscovery:
    def test_found_from_nested_directory(self, tmp_path):
        config = _write(tmp_path / "repo" / "clawker.yaml", "project: myapp\n")
        nested = tmp_path / "repo" / "src" / "pkg"
        nested.mkdir(parents=True)

        assert find_project_config(nested) == config.resolve()

        loaded = load_project_config(nested)
        assert loaded.project == "myapp"
        assert loaded.root_dir == config.parent.resolve()

    def test_defaults_without_file(self, tmp_path):
        loaded = load_project_config(tmp_path)
        assert loaded.project == ""
        assert loaded.root_dir is None
        assert loaded.workspace.default_mode is WorkspaceMode.BIND
        assert loaded.security.enable_host_proxy is True


class TestParsing:
    def test_full_document(self):
        config = project_config_from_dict(
            {
                "project": "myapp",
                "workspace": {"remote_path": "/src", "default_mode": "snapshot"},
                "agent": {
                    "env": {"DEBUG": 1, "EMPTY": None},
                    "post_init": "make deps",
                    "claude_code": {"strategy": "fresh", "use_host_auth": False},
                },
                "security": {
                    "docker_socket": True,
                    "cap_add": ["NET_ADMIN"],
                    "firewall": {"add_domains": ["example.com"], "ip_range_sources": ["github", {"name": "gcp", "required": True}]},
                    "git_credentials": {"forward_gpg": False},
                },
                "build": {"instructions": {"env": {"PATH_EXTRA": "/opt/bin"}}},
            }
        )

        assert config.workspace.remote_path == "/src"
        assert config.workspace.default_mode is WorkspaceMode.SNAPSHOT
        assert config.agent.env == {"DEBUG": "1", "EMPTY": ""}
        assert config.agent.claude_code.strategy is ClaudeStrategy.FRESH
        assert config.agent.claude_code.use_host_auth is False
        assert config.security.docker_socket is True
        assert config.security.cap_add == ("NET_ADMIN",)
        assert config.security.git_credentials.forward_gpg is False
        assert config.security.git_credentials.forward_ssh is True
        assert [s.name for s in config.security.firewall.ip_range_sources] == ["github", "gcp"]
        assert config.security.firewall.ip_range_sources[1].required is True
        assert config.instruction_env == {"PATH_EXTRA": "/opt/bin"}

    def test_wrong_type_names_the_key(self):
        with pytest.raises(ConfigError, match="'security.enable_host_proxy' must be true or false"):
            project_config_from_dict({"security": {"enable_host_proxy": "yes"}})

    def test_unknown_strategy(self):
        with pytest.raises(ValidationError, match="claude_code.strategy"):
            project_config_from_dict({"agent": {"claude_code": {"strategy": "link"}}})

    def test_invalid_yaml(self, tmp_path):
        _write(tmp_path / "clawker.yaml", "project: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_project_config(tmp_path)

    def test_non_mapping_document(self, tmp_path):
        _write(tmp_path / "clawker.yaml", "- a\n- b\n")
        with pytest.raises(ConfigError, match="must contain a YAML mapping"):
            load_project_config(tmp_path)


class TestFirewall:
    def test_add_domains_extend_defaults(self):
        firewall = FirewallConfig(add_domains=("example.com", DEFAULT_FIREWALL_DOMAINS[0]))
        domains = firewall.domains()
        assert domains[: len(DEFAULT_FIREWALL_DOMAINS)] == list(DEFAULT_FIREWALL_DOMAINS)
        assert domains[-1] == "example.com"
        assert len(domains) == len(set(domains))

    def test_override_replaces_defaults(self):
        firewall = FirewallConfig(add_domains=("ignored.com",), override_domains=("only.com",))
        assert firewall.is_override_mode()
        assert firewall.domains() == ["only.com"]


class TestSettings:
    def test_home_honours_override(self, isolated_home):
        assert clawker_home() == isolated_home / ".local" / "clawker"

    def test_default_image_from_settings(self):
        _write(clawker_home() / "settings.yaml", "default_image: clawker-default:latest\n")
        assert load_settings().default_image == "clawker-default:latest"

    def test_missing_settings(self):
        assert load_settings().default_image == ""
