"""
RouterRunner: front-facing router container for the app under test.

The router listens on a fixed host address and port and forwards to the app
container through the ``app`` docker link, the same way the platform router
sits in front of a dyno.
"""

import logging
from typing import Any

from .config import HarnessSettings, get_settings
from .errors import RouterRunnerError
from .runtime import DockerRuntime

logger = logging.getLogger(__name__)

ROUTER_NAME = "router"
APP_ALIAS = "app"


class RouterRunner:
    """Start/stop/destroy of the router container, created on first start."""

    # Process-wide default request target (HARNESS_ROUTER_HOST/PORT at
    # import). An instance built with explicit settings publishes
    # host_ip/host_port instead; AppRunner points its client at those.
    HOST_IP: str = get_settings().router_host
    HOST_PORT: int = get_settings().router_port

    def __init__(
        self,
        runtime: DockerRuntime | None = None,
        settings: HarnessSettings | None = None,
    ):
        self.settings = settings or get_settings()
        self.runtime = runtime or DockerRuntime(stop_timeout=self.settings.stop_timeout)
        self.host_ip = self.settings.router_host
        self.host_port = self.settings.router_port
        self.container: Any | None = None

    def _create(self) -> Any:
        port = f"{self.host_port}/tcp"
        try:
            return self.runtime.client.containers.create(
                image=self.settings.router_image,
                name=ROUTER_NAME,
                links={APP_ALIAS: APP_ALIAS},
                ports={port: (self.host_ip, self.host_port)},
                environment=[f"PORT={self.host_port}"],
                detach=True,
            )
        except Exception as e:
            raise RouterRunnerError(
                f"Failed to create router container from {self.settings.router_image}: {e}"
            ) from e

    def start(self) -> None:
        if self.container is None:
            self.container = self._create()
        self.runtime.start(self.container)
        logger.info(f"Router started on {self.host_ip}:{self.host_port}")

    def stop(self) -> None:
        """Stop the router. Safe to call when never started."""
        if self.container is None:
            return
        self.runtime.stop(self.container)
        logger.info("Router stopped")

    def destroy(self) -> None:
        """Force-remove the router container. Safe to call twice."""
        if self.container is None:
            return
        container, self.container = self.container, None
        self.runtime.delete(container, force=True)
        logger.info("Router container removed")

    def __str__(self) -> str:
        return f"RouterRunner({self.host_ip}:{self.host_port})"
