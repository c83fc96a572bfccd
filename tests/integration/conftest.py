"""
Docker integration test configuration and fixtures.

Skips the whole directory unless integration tests are enabled and the
Docker daemon and harness images are available.
"""

import os
from collections.abc import Generator

import docker
import httpx
import pytest
from testcontainers.core.container import DockerContainer

from buildpack_harness.config import get_settings

SKIP_INTEGRATION_TESTS = not bool(os.getenv("RUN_INTEGRATION_TESTS", ""))
UPSTREAM_IMAGE = os.getenv("UPSTREAM_IMAGE", "nginx:alpine")


def skip_if_docker_unavailable():
    """Skip test if Docker is not available or integration tests disabled."""
    if SKIP_INTEGRATION_TESTS:
        pytest.skip("Integration tests disabled. Set RUN_INTEGRATION_TESTS=1 to enable")

    try:
        docker_client = docker.from_env()
        docker_client.ping()
    except Exception as e:
        pytest.skip(f"Docker not available for integration tests: {e}")

    settings = get_settings()
    try:
        for image in (settings.app_image, settings.router_image, settings.proxy_image):
            try:
                docker_client.images.get(image)
            except docker.errors.ImageNotFound:
                pytest.skip(f"Harness image {image} not built")
    finally:
        docker_client.close()


@pytest.fixture(scope="session", autouse=True)
def check_docker_environment():
    """Session-wide check for Docker availability."""
    skip_if_docker_unavailable()


@pytest.fixture
def upstream_container() -> Generator[tuple[DockerContainer, str], None, None]:
    """
    Pre-running upstream reachable on the docker bridge.

    Yields the container and its bridge address, for RunningEndpoint tests.
    """
    container = DockerContainer(UPSTREAM_IMAGE).with_exposed_ports(80)

    with container:
        host_port = container.get_exposed_port(80)
        with httpx.Client() as client:
            for _ in range(50):
                try:
                    client.get(f"http://localhost:{host_port}/", timeout=1.0)
                    break
                except httpx.TransportError:
                    continue

        wrapped = container.get_wrapped_container()
        wrapped.reload()
        address = wrapped.attrs["NetworkSettings"]["IPAddress"]

        yield container, address
