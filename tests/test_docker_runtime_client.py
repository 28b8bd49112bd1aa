"""Tests for the docker SDK runtime adapter against a mocked API client."""

from unittest.mock import MagicMock

import docker.errors
import pytest
import requests

from clawker.adapters.docker_runtime_client import DockerRuntimeClient
from clawker.core.constants import COPY_HELPER_IMAGE, LABEL_MANAGED
from clawker.core.errors import DaemonError, RuntimeUnavailableError
from clawker.ports.runtime_client import ContainerCreateRequest


@pytest.fixture
def api():
    return MagicMock()


@pytest.fixture
def client(api):
    return DockerRuntimeClient(api=api)


def _api_error(status: int, message: str = "boom") -> docker.errors.APIError:
    return docker.errors.APIError(message, response=MagicMock(status_code=status), explanation=message)


# ═══════════════════════════════════════════════════════════════════════════════
# Error translation
# ═══════════════════════════════════════════════════════════════════════════════


class TestErrorTranslation:
    def test_api_error_becomes_daemon_error(self, client, api):
        api.start.side_effect = _api_error(500, "cannot start")
        with pytest.raises(DaemonError, match="cannot start"):
            client.container_start("abc")

    def test_connection_refused_is_unavailable(self, client, api):
        api.ping.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(RuntimeUnavailableError):
            client.ping()


# ═══════════════════════════════════════════════════════════════════════════════
# Volumes
# ═══════════════════════════════════════════════════════════════════════════════


class TestVolumes:
    def test_missing_volume(self, client, api):
        api.inspect_volume.side_effect = docker.errors.NotFound("no such volume")
        assert client.volume_inspect("v") is None

    def test_labels_default_to_empty(self, client, api):
        api.inspect_volume.return_value = {"Name": "v", "Labels": None}
        assert client.volume_inspect("v").labels == {}

    def test_copy_helper_removed_after_failure(self, client, api, tmp_path):
        (tmp_path / "settings.json").write_text("{}")
        api.create_container.return_value = {"Id": "helper123"}
        api.wait.return_value = {"StatusCode": 1}

        with pytest.raises(DaemonError, match="status 1"):
            client.copy_to_volume("clawker.myapp.dev-config", tmp_path, "/home/claude/.claude")

        assert api.create_container.call_args.kwargs["image"] == COPY_HELPER_IMAGE
        api.put_archive.assert_called_once()
        api.remove_container.assert_called_once_with("helper123", force=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Containers
# ═══════════════════════════════════════════════════════════════════════════════


class TestContainers:
    def test_create_sends_one_body(self, client, api):
        api.create_container_from_config.return_value = {"Id": "c1", "Warnings": ["low memory"]}
        request = ContainerCreateRequest(
            name="clawker.myapp.dev",
            config={"Image": "alpine"},
            host_config={"AutoRemove": True},
            networking_config={"EndpointsConfig": {"clawker-net": {}}},
        )

        response = client.container_create(request)

        body = api.create_container_from_config.call_args.args[0]
        assert body == {
            "Image": "alpine",
            "HostConfig": {"AutoRemove": True},
            "NetworkingConfig": {"EndpointsConfig": {"clawker-net": {}}},
        }
        assert api.create_container_from_config.call_args.kwargs["name"] == "clawker.myapp.dev"
        assert (response.id, response.warnings) == ("c1", ["low memory"])

    def test_wait_reports_daemon_error(self, client, api):
        api.wait.return_value = {"StatusCode": 0, "Error": {"Message": "wait failed"}}
        with pytest.raises(DaemonError, match="wait failed"):
            client.container_wait("c1", condition="removed")

    def test_wait_returns_status(self, client, api):
        api.wait.return_value = {"StatusCode": 3}
        assert client.container_wait("c1") == 3
        assert api.wait.call_args.kwargs["condition"] == "next-exit"


# ═══════════════════════════════════════════════════════════════════════════════
# Networks and images
# ═══════════════════════════════════════════════════════════════════════════════


class TestNetworksAndImages:
    def test_existing_network_untouched(self, client, api):
        api.networks.return_value = [{"Name": "clawker-net"}]
        client.ensure_network("clawker-net")
        api.create_network.assert_not_called()

    def test_network_created_concurrently(self, client, api):
        api.networks.return_value = []
        api.create_network.side_effect = _api_error(409, "already exists")
        client.ensure_network("clawker-net")
        assert api.create_network.call_args.kwargs["labels"] == {LABEL_MANAGED: "true"}

    def test_network_create_failure(self, client, api):
        api.networks.return_value = []
        api.create_network.side_effect = _api_error(500)
        with pytest.raises(DaemonError):
            client.ensure_network("clawker-net")

    def test_image_exists(self, client, api):
        api.inspect_image.side_effect = docker.errors.ImageNotFound("missing")
        assert client.image_exists("ghost:1") is False

    def test_find_project_image_prefers_latest(self, client, api):
        api.images.return_value = [{"RepoTags": ["clawker-myapp:abc", "clawker-myapp:latest"]}]
        assert client.find_project_image("myapp") == "clawker-myapp:latest"
