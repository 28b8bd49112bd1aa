"""Tests for container and volume naming."""

import random
import threading

import pytest

from clawker.core.errors import ValidationError
from clawker.kinds import VolumeKind
from clawker.names import (
    container_name,
    generate_random_name,
    parse_container_name,
    resolve_names,
    validate_resource_name,
    volume_name,
)


class TestContainerName:
    def test_with_project(self):
        assert container_name("myapp", "dev") == "clawker.myapp.dev"

    def test_without_project(self):
        assert container_name("", "dev") == "clawker.dev"

    def test_volume_name_appends_kind(self):
        assert volume_name("myapp", "dev", VolumeKind.CONFIG) == "clawker.myapp.dev-config"
        assert volume_name("", "dev", "workspace") == "clawker.dev-workspace"

    def test_too_long_name_rejected(self):
        with pytest.raises(ValidationError, match="too long"):
            container_name("myapp", "a" * 80)

    def test_distinct_agents_never_collide_under_concurrency(self):
        agents = [f"agent{i}" for i in range(50)]
        results: dict[str, str] = {}

        def resolve(agent: str) -> None:
            results[agent] = container_name("myapp", agent)

        threads = [threading.Thread(target=resolve, args=(a,)) for a in agents]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(results.values())) == len(agents)
        assert all(results[a] == container_name("myapp", a) for a in agents)


class TestValidateResourceName:
    @pytest.mark.parametrize("name", ["dev", "Dev_1", "a.b-c", "0agent"])
    def test_valid(self, name):
        validate_resource_name(name)

    @pytest.mark.parametrize(
        ("name", "message"),
        [
            ("", "cannot be empty"),
            ("-dev", "cannot start with a hyphen"),
            ("my/agent", "path separators"),
            ("my agent", "path separators"),
            ("dev!", "only"),
        ],
    )
    def test_invalid(self, name, message):
        with pytest.raises(ValidationError, match=message):
            validate_resource_name(name)


class TestParseContainerName:
    def test_project_and_agent(self):
        assert parse_container_name("/clawker.myapp.dev") == ("myapp", "dev")

    def test_project_less(self):
        assert parse_container_name("clawker.dev") == ("", "dev")

    def test_foreign_name(self):
        assert parse_container_name("postgres") is None


class TestResolveNames:
    def test_generated_name_is_deterministic_with_seed(self):
        first = resolve_names("myapp", rng=random.Random(7))
        second = resolve_names("myapp", rng=random.Random(7))
        assert first == second

    def test_generated_name_shape(self):
        adjective, noun = generate_random_name(random.Random(1)).split("-")
        assert adjective and noun

    def test_config_volume_always_present(self):
        names = resolve_names("myapp", "dev", kinds=(VolumeKind.WORKSPACE,))
        assert names.config_volume == "clawker.myapp.dev-config"
        assert names.volumes[VolumeKind.WORKSPACE] == "clawker.myapp.dev-workspace"

    def test_volumes_match_volume_name(self):
        names = resolve_names("", "dev", kinds=(VolumeKind.CONFIG, VolumeKind.WORKSPACE))
        for kind, name in names.volumes.items():
            assert name == volume_name("", "dev", kind)
