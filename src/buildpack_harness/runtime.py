"""
DockerRuntime: thin container runtime capability over the docker SDK.

The runners only need create/start/attach/stop/delete plus a couple of
helpers for the sidecar containers. Keeping them behind one object lets unit
tests substitute a fake runtime without a Docker daemon.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import docker
from docker.errors import DockerException, ImageNotFound

from .errors import ContainerRuntimeError

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str, str], None]


class DockerRuntime:
    """Container lifecycle operations backed by a lazily created docker client."""

    def __init__(self, client: Any | None = None, stop_timeout: int = 5):
        """
        Args:
            client: Existing docker client (created from the environment if None)
            stop_timeout: Seconds docker waits before killing a stopping container
        """
        self._client = client
        self.stop_timeout = stop_timeout

    @property
    def client(self) -> Any:
        """Docker client, connected on first use."""
        if self._client is None:
            try:
                self._client = docker.from_env()
                logger.info("Connected to Docker daemon")
            except DockerException as e:
                raise ContainerRuntimeError(
                    f"Docker daemon unavailable: {e}. "
                    f"Ensure Docker daemon is running and accessible."
                ) from e
        return self._client

    def create(self, config: dict[str, Any]) -> Any:
        """
        Create (without starting) a container from an engine-style config.

        Args:
            config: ``{name, Image, Env, HostConfig: {Binds}, Links?}``

        Returns:
            The created docker Container
        """
        kwargs: dict[str, Any] = {
            "image": config["Image"],
            "name": config.get("name"),
            "environment": list(config.get("Env", [])),
            "volumes": list(config.get("HostConfig", {}).get("Binds", [])),
            "detach": True,
        }
        links = config.get("Links")
        if links:
            kwargs["links"] = dict(link.split(":", 1) for link in links)

        try:
            container = self.client.containers.create(**kwargs)
        except ImageNotFound as e:
            raise ContainerRuntimeError(
                f"Image not found: {config['Image']}. Ensure image is built and available locally."
            ) from e

        logger.info(f"Created container {config.get('name')} ({container.short_id})")
        return container

    def start(self, container: Any) -> None:
        container.start()

    def attach(self, container: Any, on_chunk: ChunkCallback) -> None:
        """
        Stream the container's stdout and stderr until the container exits.

        Output already written before attaching is replayed first, so a
        banner printed during start-up is not missed.

        Args:
            container: Started container
            on_chunk: Called as ``on_chunk(stream_name, text)`` for each chunk
        """
        stream = container.attach(stdout=True, stderr=True, stream=True, logs=True, demux=True)
        for stdout, stderr in stream:
            if stdout:
                on_chunk("stdout", stdout.decode("utf-8", errors="replace"))
            if stderr:
                on_chunk("stderr", stderr.decode("utf-8", errors="replace"))

    def stop(self, container: Any) -> None:
        container.stop(timeout=self.stop_timeout)

    def delete(self, container: Any, force: bool = False) -> None:
        container.remove(force=force)

    def run_detached(self, image: str, name: str, **kwargs: Any) -> Any:
        """Create and start a background container, e.g. a sidecar service."""
        try:
            container = self.client.containers.run(image=image, name=name, detach=True, **kwargs)
        except ImageNotFound as e:
            raise ContainerRuntimeError(
                f"Image not found: {image}. Ensure image is built and available locally."
            ) from e
        logger.info(f"Started container {name} ({container.short_id})")
        return container

    def wait_until_running(self, container: Any, timeout: float, poll_interval: float = 0.1) -> None:
        """
        Wait for container to reach running state.

        Raises:
            ContainerRuntimeError: On timeout or if the container exits
        """
        start_time = time.time()

        while time.time() - start_time < timeout:
            container.reload()

            if container.status == "running":
                return
            elif container.status in ("exited", "dead"):
                raise ContainerRuntimeError(
                    f"Container {container.name} failed to start (status: {container.status}). "
                    f"Check container logs for details."
                )

            time.sleep(poll_interval)

        raise ContainerRuntimeError(
            f"Container startup timeout ({timeout}s) exceeded. "
            f"Container {container.name} status: {container.status}."
        )

    def ip_address(self, container: Any) -> str:
        """
        Address of the container on its docker network.

        Raises:
            ContainerRuntimeError: If docker reports no address
        """
        container.reload()
        settings = container.attrs.get("NetworkSettings", {})
        address = settings.get("IPAddress")
        if not address:
            for network in (settings.get("Networks") or {}).values():
                if network.get("IPAddress"):
                    address = network["IPAddress"]
                    break
        if not address:
            raise ContainerRuntimeError(f"Container {container.name} has no network address")
        return address
