"""Buildpack harness - container orchestration for buildpack integration tests."""

__version__ = "0.1.0"

from .app_runner import AppRunner, AppSpec, CapturedOutput
from .config import HarnessSettings, fixtures_path, get_settings
from .errors import (
    AppRunnerError,
    ContainerRuntimeError,
    HarnessError,
    ProxyRunnerError,
    RouterRunnerError,
)
from .interpolation import interpolate
from .proxy_runner import (
    DefaultProxy,
    LiteralHandler,
    NoProxy,
    ProxyRunner,
    RunningEndpoint,
    coerce_proxy_directive,
)
from .readiness_gate import ReadinessGate
from .retry_client import RetryClient, is_transient
from .router_runner import RouterRunner
from .runtime import DockerRuntime

__all__ = [
    # Orchestration
    "AppRunner",
    "AppSpec",
    "CapturedOutput",
    "ReadinessGate",
    # Collaborators
    "DockerRuntime",
    "ProxyRunner",
    "RouterRunner",
    "RetryClient",
    "is_transient",
    # Proxy directives
    "NoProxy",
    "DefaultProxy",
    "LiteralHandler",
    "RunningEndpoint",
    "coerce_proxy_directive",
    # Configuration
    "HarnessSettings",
    "get_settings",
    "fixtures_path",
    "interpolate",
    # Errors
    "HarnessError",
    "AppRunnerError",
    "ContainerRuntimeError",
    "ProxyRunnerError",
    "RouterRunnerError",
]
