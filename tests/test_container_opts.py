"""Tests for the container options bag: parsing, validation and request building."""

import os

import pytest

from clawker.config import ProjectConfig, SecurityConfig
from clawker.container_opts import (
    ContainerOptions,
    parse_cpus,
    parse_duration,
    parse_expose,
    parse_memory,
    parse_memory_swap,
    parse_port_spec,
    parse_restart_policy,
)
from clawker.core.errors import ValidationError
from clawker.mounts import bind_mount


def _build(opts: ContainerOptions, project: ProjectConfig | None = None, **kwargs):
    return opts.build_configs(
        container_name="clawker.myapp.dev",
        mounts=kwargs.pop("mounts", []),
        project=project or ProjectConfig(),
        **kwargs,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Value parsers
# ═══════════════════════════════════════════════════════════════════════════════


class TestValueParsers:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [("512m", 512 * 1024**2), ("2g", 2 * 1024**3), ("1024", 1024), ("1.5k", 1536), ("64MB", 64 * 1024**2)],
    )
    def test_memory(self, value, expected):
        assert parse_memory(value) == expected

    def test_memory_invalid(self):
        with pytest.raises(ValidationError, match="invalid size"):
            parse_memory("lots")

    def test_memory_swap_unlimited(self):
        assert parse_memory_swap("-1") == -1

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("30s", 30 * 10**9), ("1m30s", 90 * 10**9), ("500ms", 5 * 10**8), ("0", 0), ("1.5h", 5400 * 10**9)],
    )
    def test_duration(self, value, expected):
        assert parse_duration(value, "--health-interval") == expected

    def test_duration_invalid(self):
        with pytest.raises(ValidationError, match="invalid duration"):
            parse_duration("10 seconds", "--health-interval")

    def test_cpus(self):
        assert parse_cpus("1.5") == 1_500_000_000

    def test_restart_policy(self):
        assert parse_restart_policy("on-failure:3") == {"Name": "on-failure", "MaximumRetryCount": 3}
        assert parse_restart_policy("always") == {"Name": "always"}
        with pytest.raises(ValidationError, match="no policy provided"):
            parse_restart_policy(":3")
        with pytest.raises(ValidationError, match="must be an integer"):
            parse_restart_policy("on-failure:x")


class TestPortSpecs:
    def test_host_ip_and_port(self):
        (mapping,) = parse_port_spec("127.0.0.1:8080:80/tcp")
        assert mapping.key == "80/tcp"
        assert (mapping.host_ip, mapping.host_port) == ("127.0.0.1", "8080")

    def test_container_port_only(self):
        (mapping,) = parse_port_spec("80")
        assert (mapping.key, mapping.host_ip, mapping.host_port) == ("80/tcp", "", "")

    def test_ranges(self):
        mappings = parse_port_spec("8000-8001:9000-9001/udp")
        assert [(m.key, m.host_port) for m in mappings] == [("9000/udp", "8000"), ("9001/udp", "8001")]

    def test_ipv6_host(self):
        (mapping,) = parse_port_spec("[::1]:8080:80")
        assert mapping.host_ip == "::1"

    @pytest.mark.parametrize("spec", ["80/icmp", "1:2:3:4", "0", "10.0.0.300:80:80", "8000-8002:9000-9001"])
    def test_invalid(self, spec):
        with pytest.raises(ValidationError):
            parse_port_spec(spec)

    def test_expose_range(self):
        assert parse_expose("3000-3002") == ["3000/tcp", "3001/tcp", "3002/tcp"]


# ═══════════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════════


class TestValidateFlags:
    @pytest.mark.parametrize(
        ("opts", "message"),
        [
            (ContainerOptions(memory_swap="1g"), "--memory-swap requires --memory"),
            (ContainerOptions(memory="2g", memory_swap="1g"), "greater than or equal"),
            (ContainerOptions(memory_swappiness=101), "between -1 and 100"),
            (ContainerOptions(blkio_weight=5), "between 10 and 1000"),
            (ContainerOptions(oom_score_adj=2000), "between -1000 and 1000"),
            (ContainerOptions(mac_address="zz:zz"), "not a valid mac address"),
            (ContainerOptions(ip="::1"), "not an ip address"),
            (ContainerOptions(ip6="10.0.0.1"), "not an ip address"),
            (ContainerOptions(dns=["resolver"]), "invalid DNS server"),
            (ContainerOptions(attach=["stdio"]), "invalid attach target"),
            (ContainerOptions(health_interval="10s"), "--health-cmd is required"),
            (ContainerOptions(health_cmd="true", health_timeout="-1s"), "cannot be negative"),
            (ContainerOptions(no_healthcheck=True, health_cmd="true"), "conflicts"),
            (ContainerOptions(restart="always", auto_remove=True), "--restart and --rm"),
            (ContainerOptions(pid="guest"), "invalid PID mode"),
            (ContainerOptions(uts="container:x"), "invalid UTS mode"),
            (ContainerOptions(log_driver="none", log_opts=["max-size=1m"]), "driver none"),
            (ContainerOptions(publish=["127.0.0.1:8080:99999"]), "invalid port mapping"),
            (ContainerOptions(expose=["80/sctpx"]), "--expose"),
            (ContainerOptions(env_file=["/nonexistent/app.env"]), "failed to read --env-file"),
            (ContainerOptions(sysctls=["net.core.somaxconn"]), "expected KEY=VALUE"),
            (ContainerOptions(security_opt=["bogus"]), "invalid --security-opt"),
        ],
    )
    def test_rejects(self, opts, message):
        with pytest.raises(ValidationError, match=message):
            opts.validate_flags()

    def test_restart_no_with_auto_remove_is_allowed(self):
        ContainerOptions(restart="no", auto_remove=True).validate_flags()

    def test_namespace_container_mode_allowed_for_pid(self):
        ContainerOptions(pid="container:db", ipc="shareable").validate_flags()


# ═══════════════════════════════════════════════════════════════════════════════
# Request building
# ═══════════════════════════════════════════════════════════════════════════════


class TestBuildConfigs:
    def test_publish_produces_exposed_port_and_binding(self):
        request = _build(ContainerOptions(image="alpine", publish=["127.0.0.1:8080:80/tcp"]))

        assert request.config["ExposedPorts"] == {"80/tcp": {}}
        assert request.host_config["PortBindings"] == {"80/tcp": [{"HostIp": "127.0.0.1", "HostPort": "8080"}]}

    def test_cli_env_overrides_env_file_and_base(self, tmp_path):
        env_file = tmp_path / "app.env"
        env_file.write_text("# comment\nKEY=from-file\nONLY_FILE=1\n\n")

        request = _build(
            ContainerOptions(image="alpine", env_file=[str(env_file)], env=["KEY=from-cli"]),
            base_env=["KEY=from-base", "BASE=1"],
        )

        env = dict(e.split("=", 1) for e in request.config["Env"])
        assert env == {"KEY": "from-cli", "BASE": "1", "ONLY_FILE": "1"}

    def test_bare_env_key_taken_from_host(self, monkeypatch):
        monkeypatch.setenv("HOST_TOKEN", "abc")
        monkeypatch.delenv("UNSET_TOKEN", raising=False)

        request = _build(ContainerOptions(image="alpine", env=["HOST_TOKEN", "UNSET_TOKEN"]))

        assert request.config["Env"] == ["HOST_TOKEN=abc"]

    def test_managed_labels_win(self):
        request = _build(
            ContainerOptions(image="alpine", labels=["dev.clawker.managed=false", "team=core"]),
            managed_labels={"dev.clawker.managed": "true"},
        )

        assert request.config["Labels"] == {"dev.clawker.managed": "true", "team": "core"}

    def test_healthcheck_and_restart(self):
        request = _build(
            ContainerOptions(
                image="alpine",
                health_cmd="curl -f localhost",
                health_interval="30s",
                health_retries=3,
                restart="on-failure:5",
            )
        )

        assert request.config["Healthcheck"] == {
            "Test": ["CMD-SHELL", "curl -f localhost"],
            "Interval": 30 * 10**9,
            "Retries": 3,
        }
        assert request.host_config["RestartPolicy"] == {"Name": "on-failure", "MaximumRetryCount": 5}

    def test_no_healthcheck(self):
        request = _build(ContainerOptions(image="alpine", no_healthcheck=True))
        assert request.config["Healthcheck"] == {"Test": ["NONE"]}

    def test_interactive_stdin(self):
        request = _build(ContainerOptions(image="alpine", tty=True, stdin=True, command=["bash"]))

        assert request.config["Tty"] is True
        assert request.config["OpenStdin"] is True
        assert request.config["StdinOnce"] is True
        assert request.config["Cmd"] == ["bash"]

    def test_attach_subset(self):
        request = _build(ContainerOptions(image="alpine", attach=["STDERR"]))
        assert (request.config["AttachStdin"], request.config["AttachStdout"], request.config["AttachStderr"]) == (
            False,
            False,
            True,
        )

    def test_empty_entrypoint_resets(self):
        assert _build(ContainerOptions(image="alpine", entrypoint="")).config["Entrypoint"] == [""]
        assert "Entrypoint" not in _build(ContainerOptions(image="alpine")).config

    def test_default_network_and_endpoint(self):
        request = _build(ContainerOptions(image="alpine", ip="172.20.0.5", mac_address="02:42:ac:11:00:02"))

        assert request.host_config["NetworkMode"] == "clawker-net"
        endpoint = request.networking_config["EndpointsConfig"]["clawker-net"]
        assert endpoint["IPAMConfig"] == {"IPv4Address": "172.20.0.5"}
        assert endpoint["MacAddress"] == "02:42:ac:11:00:02"

    def test_host_network_has_no_endpoints(self):
        request = _build(ContainerOptions(image="alpine", network="host"))
        assert request.networking_config == {}

    def test_resources(self):
        host = _build(
            ContainerOptions(
                image="alpine",
                memory="512m",
                memory_swap="-1",
                cpus="0.5",
                pids_limit=100,
                memory_swappiness=10,
            )
        ).host_config

        assert host["Memory"] == 512 * 1024**2
        assert host["MemorySwap"] == -1
        assert host["NanoCpus"] == 500_000_000
        assert host["PidsLimit"] == 100
        assert host["MemorySwappiness"] == 10

    def test_cli_capabilities_replace_project_defaults(self):
        project = ProjectConfig(security=SecurityConfig(cap_add=("NET_ADMIN",)))

        assert _build(ContainerOptions(image="alpine"), project).host_config["CapAdd"] == ["NET_ADMIN"]
        assert _build(ContainerOptions(image="alpine", cap_add=["SYS_PTRACE"]), project).host_config[
            "CapAdd"
        ] == ["SYS_PTRACE"]

    def test_mounts_volumes_and_tmpfs(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        host = _build(
            ContainerOptions(image="alpine", volumes=["./data:/data:ro"], tmpfs=["/run:size=64m", "/tmp"]),
            mounts=[bind_mount("/src", "/workspace")],
        ).host_config

        assert host["Mounts"] == [{"Type": "bind", "Source": "/src", "Target": "/workspace", "ReadOnly": False}]
        assert host["Binds"] == [f"{os.path.join(os.getcwd(), 'data')}:/data:ro"]
        assert host["Tmpfs"] == {"/run": "size=64m", "/tmp": ""}

    def test_log_config_and_sysctls(self):
        host = _build(
            ContainerOptions(
                image="alpine",
                log_driver="json-file",
                log_opts=["max-size=10m"],
                sysctls=["net.core.somaxconn=1024"],
                annotations=["io.example=1"],
            )
        ).host_config

        assert host["LogConfig"] == {"Type": "json-file", "Config": {"max-size": "10m"}}
        assert host["Sysctls"] == {"net.core.somaxconn": "1024"}
        assert host["Annotations"] == {"io.example": "1"}

    def test_security_opts(self, tmp_path):
        profile = tmp_path / "seccomp.json"
        profile.write_text('{"defaultAction": "SCMP_ACT_ALLOW"}')

        host = _build(
            ContainerOptions(
                image="alpine",
                security_opt=["no-new-privileges", "apparmor:unconfined", f"seccomp={profile}"],
            )
        ).host_config

        assert host["SecurityOpt"] == [
            "no-new-privileges",
            "apparmor=unconfined",
            'seccomp={"defaultAction":"SCMP_ACT_ALLOW"}',
        ]

    def test_built_request_replays_through_validation(self):
        opts = ContainerOptions(image="alpine", memory="1g", memory_swap="2g", publish=["8080:80"])
        _build(opts)
        opts.validate_flags()
