"""Docker SDK adapter for the RuntimeClient port."""

from __future__ import annotations

import logging
import secrets
import socket
from collections.abc import Callable, Iterator
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar, cast

import docker
import requests
from docker.api.client import APIClient
from docker.types import Mount as DockerMount
from docker.utils.socket import frames_iter

from clawker.containerfs import tar_directory
from clawker.core.constants import (
    CONTAINER_GID,
    CONTAINER_UID,
    COPY_HELPER_IMAGE,
    LABEL_MANAGED,
    LABEL_PROJECT,
    LABEL_PURPOSE,
    MANAGED_LABEL_VALUE,
)
from clawker.core.errors import DaemonError, RuntimeUnavailableError
from clawker.ports.runtime_client import (
    ContainerCreateRequest,
    ContainerCreateResponse,
    HijackedConnection,
    RuntimeClient,
    VolumeInfo,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

COPY_HELPER_PURPOSE = "copy-to-volume"


def _translate_errors(func: F) -> F:
    """Map SDK and transport failures onto the clawker error hierarchy."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except docker.errors.APIError as e:
            raise DaemonError(
                user_message=str(e.explanation or e),
                debug_context=f"status={e.status_code}",
            ) from e
        except (requests.exceptions.ConnectionError, docker.errors.DockerException) as e:
            raise RuntimeUnavailableError(
                debug_context=str(e),
                suggested_action="Start Docker and check DOCKER_HOST",
            ) from e

    return cast(F, wrapper)


# ═══════════════════════════════════════════════════════════════════════════════
# Attach stream
# ═══════════════════════════════════════════════════════════════════════════════


class DockerAttachConnection(HijackedConnection):
    """Hijacked attach socket returned by the Engine API."""

    def __init__(self, sock: Any, tty: bool) -> None:
        self._sock = sock
        self._tty = tty
        # SocketIO wraps the real socket on plain HTTP transports
        self._raw: socket.socket = getattr(sock, "_sock", sock)

    def read_frames(self) -> Iterator[tuple[int, bytes]]:
        yield from frames_iter(self._sock, self._tty)

    def send(self, data: bytes) -> None:
        self._raw.sendall(data)

    def close_write(self) -> None:
        try:
            self._raw.shutdown(socket.SHUT_WR)
        except OSError as e:
            logger.debug("half-close failed: %s", e)

    def close(self) -> None:
        try:
            self._raw.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("attach socket already closed: %s", e)
        self._sock.close()


# ═══════════════════════════════════════════════════════════════════════════════
# Runtime client
# ═══════════════════════════════════════════════════════════════════════════════


class DockerRuntimeClient(RuntimeClient):
    """RuntimeClient backed by the low-level docker SDK API client."""

    def __init__(self, api: APIClient | None = None) -> None:
        self._api = api

    @property
    def api(self) -> APIClient:
        if self._api is None:
            try:
                self._api = docker.from_env().api
            except docker.errors.DockerException as e:
                raise RuntimeUnavailableError(
                    debug_context=str(e),
                    suggested_action="Start Docker and check DOCKER_HOST",
                ) from e
        return self._api

    @_translate_errors
    def ping(self) -> None:
        self.api.ping()

    # ─────────────────────────────────────────────────────────────────────────
    # Volumes
    # ─────────────────────────────────────────────────────────────────────────

    @_translate_errors
    def volume_inspect(self, name: str) -> VolumeInfo | None:
        try:
            data = self.api.inspect_volume(name)
        except docker.errors.NotFound:
            return None
        return VolumeInfo(name=data["Name"], labels=data.get("Labels") or {})

    @_translate_errors
    def volume_create(self, name: str, labels: dict[str, str]) -> VolumeInfo:
        data = self.api.create_volume(name=name, labels=labels)
        return VolumeInfo(name=data["Name"], labels=data.get("Labels") or {})

    @_translate_errors
    def volume_remove(self, name: str) -> None:
        self.api.remove_volume(name)

    @_translate_errors
    def copy_to_volume(self, volume_name: str, src_dir: Path, dest_path: str) -> None:
        """Copy a host directory into a volume through a throwaway helper container."""
        archive = tar_directory(src_dir)
        self._ensure_image(COPY_HELPER_IMAGE)

        helper = self.api.create_container(
            image=COPY_HELPER_IMAGE,
            command=["chown", "-R", f"{CONTAINER_UID}:{CONTAINER_GID}", dest_path],
            name=f"clawker-copy-{secrets.token_hex(4)}",
            labels={LABEL_MANAGED: MANAGED_LABEL_VALUE, LABEL_PURPOSE: COPY_HELPER_PURPOSE},
            host_config=self.api.create_host_config(
                mounts=[DockerMount(target=dest_path, source=volume_name, type="volume")]
            ),
        )
        helper_id = helper["Id"]
        try:
            self.api.put_archive(helper_id, dest_path, archive)
            self.api.start(helper_id)
            status = self.api.wait(helper_id)
            code = status.get("StatusCode", 0)
            if code != 0:
                raise DaemonError(
                    user_message=f"copy to volume {volume_name} failed: helper exited with status {code}"
                )
        finally:
            try:
                self.api.remove_container(helper_id, force=True)
            except docker.errors.APIError as e:
                logger.warning("failed to remove copy helper %s: %s", helper_id[:12], e)
        logger.debug("copied %s into %s:%s", src_dir, volume_name, dest_path)

    # ─────────────────────────────────────────────────────────────────────────
    # Containers
    # ─────────────────────────────────────────────────────────────────────────

    @_translate_errors
    def container_create(self, request: ContainerCreateRequest) -> ContainerCreateResponse:
        body = dict(request.config)
        body["HostConfig"] = request.host_config
        if request.networking_config:
            body["NetworkingConfig"] = request.networking_config
        data = self.api.create_container_from_config(body, name=request.name)
        return ContainerCreateResponse(id=data["Id"], warnings=list(data.get("Warnings") or []))

    @_translate_errors
    def container_attach(self, container_id: str, *, stdin: bool, tty: bool) -> HijackedConnection:
        params = {"stdin": int(stdin), "stdout": 1, "stderr": 1, "stream": 1}
        sock = self.api.attach_socket(container_id, params=params)
        return DockerAttachConnection(sock, tty)

    @_translate_errors
    def container_start(self, container_id: str) -> None:
        self.api.start(container_id)

    @_translate_errors
    def container_wait(self, container_id: str, *, condition: str = "next-exit") -> int:
        result = self.api.wait(container_id, timeout=None, condition=condition)
        error = result.get("Error") or {}
        if error.get("Message"):
            raise DaemonError(user_message=error["Message"])
        return int(result.get("StatusCode", 0))

    @_translate_errors
    def container_resize(self, container_id: str, rows: int, cols: int) -> None:
        self.api.resize(container_id, height=rows, width=cols)

    @_translate_errors
    def container_remove(self, container_id: str, *, force: bool = False) -> None:
        self.api.remove_container(container_id, force=force)

    @_translate_errors
    def copy_to_container(self, container_id: str, dest_path: str, archive: bytes) -> None:
        self.api.put_archive(container_id, dest_path, archive)

    # ─────────────────────────────────────────────────────────────────────────
    # Networks and images
    # ─────────────────────────────────────────────────────────────────────────

    @_translate_errors
    def ensure_network(self, name: str) -> None:
        if self.api.networks(names=[name]):
            return
        try:
            self.api.create_network(name, driver="bridge", labels={LABEL_MANAGED: MANAGED_LABEL_VALUE})
            logger.debug("created network %s", name)
        except docker.errors.APIError as e:
            # Another run created it first
            if e.status_code != 409:
                raise

    @_translate_errors
    def image_exists(self, reference: str) -> bool:
        try:
            self.api.inspect_image(reference)
        except docker.errors.ImageNotFound:
            return False
        return True

    @_translate_errors
    def find_project_image(self, project: str) -> str | None:
        images = self.api.images(
            filters={"label": [f"{LABEL_MANAGED}={MANAGED_LABEL_VALUE}", f"{LABEL_PROJECT}={project}"]}
        )
        for image in images:
            for tag in image.get("RepoTags") or []:
                if tag.endswith(":latest"):
                    return tag
        return None

    def _ensure_image(self, reference: str) -> None:
        if self.image_exists(reference):
            return
        repository, _, tag = reference.partition(":")
        logger.info("pulling %s", reference)
        self.api.pull(repository, tag=tag or "latest")
