"""
ProxyRunner: optional mock upstream container for proxy-pass fixtures.

Fixtures that configure nginx to proxy to an upstream get a small FastAPI
application running in a sidecar container named ``proxy``. The app
container reaches it through a docker link, and its bridge address is
substituted into the app environment before the app container is created.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

from .config import HarnessSettings, get_settings
from .errors import ProxyRunnerError
from .runtime import DockerRuntime

logger = logging.getLogger(__name__)

PROXY_ALIAS = "proxy"
PROXY_SCRIPT_NAME = "app.py"
PROXY_SCRIPT_MOUNT = "/app"

PROXY_SCRIPT_TEMPLATE = """from fastapi import FastAPI

app = FastAPI()

{body}
"""


@dataclass(frozen=True)
class NoProxy:
    """No upstream proxy for this app."""


@dataclass(frozen=True)
class DefaultProxy:
    """Proxy container serving the built-in mock upstream."""


@dataclass(frozen=True)
class LiteralHandler:
    """Proxy container serving route handlers given as Python source."""

    body: str


@dataclass(frozen=True)
class RunningEndpoint:
    """Upstream already reachable at address; nothing is started or stopped."""

    address: str


ProxyDirective = Union[NoProxy, DefaultProxy, LiteralHandler, RunningEndpoint]


def coerce_proxy_directive(value: Any) -> ProxyDirective:
    """
    Map the loose ``proxy`` argument accepted by AppRunner onto a directive.

    ``None``/``False`` mean no proxy, ``True`` the default mock upstream, and
    a string is handler source for a literal proxy app.
    """
    if isinstance(value, (NoProxy, DefaultProxy, LiteralHandler, RunningEndpoint)):
        return value
    if value is None or value is False:
        return NoProxy()
    if value is True:
        return DefaultProxy()
    if isinstance(value, str):
        return LiteralHandler(value)
    raise TypeError(f"Unsupported proxy directive: {value!r}")


def render_proxy_script(body: str) -> str:
    """Wrap handler source in a minimal FastAPI application module."""
    return PROXY_SCRIPT_TEMPLATE.format(body=body.rstrip("\n"))


def write_proxy_script(body: str, directory: str | Path) -> Path:
    """Render the proxy app into directory and return the script path."""
    path = Path(directory) / PROXY_SCRIPT_NAME
    path.write_text(render_proxy_script(body))
    logger.debug(f"Wrote proxy script to {path}")
    return path


class ProxyRunner:
    """
    Lifecycle of the mock upstream container.

    When ``script_dir`` is given it is mounted read-only at /app and served
    instead of the image's default mock upstream.
    """

    def __init__(
        self,
        script_dir: str | Path | None = None,
        runtime: DockerRuntime | None = None,
        settings: HarnessSettings | None = None,
    ):
        self.settings = settings or get_settings()
        self.runtime = runtime or DockerRuntime(stop_timeout=self.settings.stop_timeout)
        self.script_dir = Path(script_dir) if script_dir is not None else None
        self.container: Any | None = None

    @property
    def is_started(self) -> bool:
        return self.container is not None

    def start(self) -> None:
        """
        Run the proxy container and wait until docker reports it running.

        Raises:
            ProxyRunnerError: If already started or the container fails to start
        """
        if self.container is not None:
            raise ProxyRunnerError("Proxy already started")

        kwargs: dict[str, Any] = {}
        if self.script_dir is not None:
            kwargs["volumes"] = [f"{self.script_dir}:{PROXY_SCRIPT_MOUNT}:ro"]
            kwargs["command"] = [
                "uvicorn",
                "--app-dir",
                PROXY_SCRIPT_MOUNT,
                f"{Path(PROXY_SCRIPT_NAME).stem}:app",
                "--host",
                "0.0.0.0",
                "--port",
                str(self.settings.proxy_port),
            ]

        logger.info(f"Starting proxy container from {self.settings.proxy_image}")
        try:
            self.container = self.runtime.run_detached(
                self.settings.proxy_image, PROXY_ALIAS, **kwargs
            )
            self.runtime.wait_until_running(self.container, self.settings.startup_timeout)
        except Exception as e:
            raise ProxyRunnerError(f"Failed to start proxy container: {e}") from e

    def ip_address(self) -> str:
        """
        Bridge address of the running proxy.

        Raises:
            ProxyRunnerError: If the proxy has not been started
        """
        if self.container is None:
            raise ProxyRunnerError("Proxy address requested before start()")
        return self.runtime.ip_address(self.container)

    def stop(self) -> None:
        """Stop the proxy container. Safe to call when not started."""
        if self.container is None:
            return
        self.runtime.stop(self.container)
        logger.info("Proxy container stopped")

    def destroy(self) -> None:
        """Force-remove the proxy container. Safe to call twice."""
        if self.container is None:
            return
        container, self.container = self.container, None
        self.runtime.delete(container, force=True)
        logger.info("Proxy container removed")

    def __str__(self) -> str:
        source = self.script_dir or "default"
        return f"ProxyRunner(app={source}, started={self.is_started})"
