"""
AppRunner: lifecycle orchestration for buildpack integration tests.

Boots the app container built from a fixture, the router in front of it and
optionally a mock upstream proxy, then runs a test action once the app
reports readiness. Readiness comes from the container's own output: the
embedded nginx prints a start-up banner when it accepts traffic.

Typical use from a test::

    with AppRunner("simple") as app:
        response = app.get("/health")
        assert response.status_code == 200

Several requests can share one running container by doing them inside
``run``::

    with AppRunner("simple") as app:
        def fetch_both():
            return app.get("/"), app.get("/missing")

        index, missing = app.run(fetch_both)
"""

import shutil
import tempfile
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, TypeVar

import requests
import structlog
from pydantic import BaseModel, ConfigDict, field_validator

from .config import PROXY_IP_PLACEHOLDER, HarnessSettings, fixtures_path, get_settings
from .errors import AppRunnerError
from .interpolation import has_placeholder, interpolate
from .proxy_runner import (
    PROXY_ALIAS,
    DefaultProxy,
    LiteralHandler,
    NoProxy,
    ProxyDirective,
    ProxyRunner,
    RunningEndpoint,
    coerce_proxy_directive,
    write_proxy_script,
)
from .readiness_gate import ReadinessGate
from .retry_client import RetryClient
from .router_runner import RouterRunner
from .runtime import DockerRuntime

logger = structlog.get_logger(__name__)

T = TypeVar("T")

APP_CONTAINER_NAME = "app"
SOURCE_MOUNT = "/src"
DEBUG_ENV = {"STATIC_DEBUG": "true"}


def normalize_env(value: Any) -> dict[str, str]:
    """Coerce an env mapping to str keys and values, rejecting unusable names."""
    if value is None:
        return {}
    env = {}
    for key, item in dict(value).items():
        key = str(key)
        if not key or "=" in key:
            raise ValueError(f"Invalid environment variable name: {key!r}")
        if isinstance(item, bool):
            item = "true" if item else "false"
        env[key] = str(item)
    return env


class AppSpec(BaseModel):
    """
    Everything needed to create the app container.

    Frozen once built; late environment changes produce a new copy via
    with_env so the container config always reflects one consistent env.
    """

    model_config = ConfigDict(frozen=True)

    fixture_path: Path
    image: str
    env: dict[str, str] = {}
    link_proxy: bool = False
    debug: bool = False
    name: str = APP_CONTAINER_NAME

    @field_validator("env", mode="before")
    @classmethod
    def _normalize_env(cls, value: Any) -> dict[str, str]:
        return normalize_env(value)

    @property
    def env_list(self) -> list[str]:
        """Env as ``KEY=VALUE`` entries, in insertion order."""
        return [f"{key}={value}" for key, value in self.env.items()]

    @property
    def binds(self) -> list[str]:
        return [f"{self.fixture_path}:{SOURCE_MOUNT}"]

    def with_env(self, env: Mapping[str, str]) -> "AppSpec":
        return self.model_copy(update={"env": normalize_env(env)})

    def container_config(self) -> dict[str, Any]:
        """Engine-style create config: ``{name, Image, Env, HostConfig, Links?}``."""
        config: dict[str, Any] = {
            "name": self.name,
            "Image": self.image,
            "Env": self.env_list,
            "HostConfig": {"Binds": self.binds},
        }
        if self.link_proxy:
            config["Links"] = [f"{PROXY_ALIAS}:{PROXY_ALIAS}"]
        return config


def resolve_proxy_placeholders(env: Mapping[str, str], address: str) -> dict[str, str]:
    """Substitute the proxy address into every env value that references it."""
    substitutions = {PROXY_IP_PLACEHOLDER: address}
    return {
        key: interpolate(value, substitutions)
        if has_placeholder(value, PROXY_IP_PLACEHOLDER)
        else value
        for key, value in env.items()
    }


class CapturedOutput:
    """
    Thread-safe buffer of ``"<stream>: <chunk>"`` messages from the app container.

    Closed at the end of a run; the contents stay readable after close.
    """

    def __init__(self) -> None:
        self._chunks: list[str] = []
        self._lock = threading.Lock()
        self.closed = False

    def write(self, message: str) -> None:
        with self._lock:
            if self.closed:
                raise ValueError("write to closed CapturedOutput")
            self._chunks.append(message)

    def close(self) -> None:
        with self._lock:
            self.closed = True

    def getvalue(self) -> str:
        with self._lock:
            return "".join(self._chunks)

    def lines(self) -> list[str]:
        return self.getvalue().splitlines()

    def __contains__(self, text: str) -> bool:
        return text in self.getvalue()

    def __str__(self) -> str:
        return self.getvalue()


class _RunControl:
    """
    Coordination between ``run``, the action task and the container task.

    ``start_lock`` serializes container start against teardown's stop, so
    the container is never started after it was stopped. ``cancelled`` keeps
    an action that is still waiting on the gate from running once teardown
    has begun.
    """

    def __init__(self, sentinel: str, capture_output: bool):
        self.gate = ReadinessGate(sentinel)
        self.output = CapturedOutput()
        self.capture_output = capture_output
        self.start_lock = threading.Lock()
        self.stop_requested = threading.Event()
        self.cancelled = threading.Event()


class AppRunner:
    """
    Orchestrates app, router and proxy containers for one fixture.

    Construction provisions the proxy (if any) and creates the app container;
    each ``run`` starts and stops the app and router around one action;
    ``destroy`` removes everything. Runs on one instance must not overlap.
    """

    def __init__(
        self,
        fixture: str,
        proxy: ProxyDirective | str | bool | None = None,
        env: Mapping[str, Any] | None = None,
        debug: bool = False,
        *,
        runtime: DockerRuntime | None = None,
        router: RouterRunner | None = None,
        client: RetryClient | None = None,
        settings: HarnessSettings | None = None,
    ):
        """
        Provision the proxy and create (without starting) the app container.

        Args:
            fixture: Fixture directory name (or absolute path) mounted at /src
            proxy: Proxy directive; a string is FastAPI handler source,
                True selects the default mock upstream
            env: App environment; values may reference ``${PROXY_IP_ADDRESS}``
            debug: Echo container output and set STATIC_DEBUG in the app
            runtime: Container runtime (docker from the environment if None)
            router: Router supervisor (created on the same runtime if None)
            client: HTTP client used by get (router-targeted if None)
            settings: Harness settings (process-wide settings if None)

        Raises:
            AppRunnerError: If the proxy or app container cannot be created
        """
        self.settings = settings or get_settings()
        self.runtime = runtime or DockerRuntime(stop_timeout=self.settings.stop_timeout)
        self.debug = debug
        self.router = router or RouterRunner(self.runtime, self.settings)
        self._owns_client = client is None
        self.client = client or RetryClient(self._router_settings(), debug=debug)

        self._running = False
        self._tmpdir: Path | None = None
        self.proxy: ProxyRunner | None = None
        self.proxy_address: str | None = None
        self.app: Any | None = None

        app_env = dict(env or {})
        if debug:
            app_env.update(DEBUG_ENV)

        directive = coerce_proxy_directive(proxy)
        self.app_spec = AppSpec(
            fixture_path=fixtures_path(fixture, self.settings),
            image=self.settings.app_image,
            env=app_env,
            link_proxy=isinstance(directive, (DefaultProxy, LiteralHandler)),
            debug=debug,
        )

        try:
            self._provision_proxy(directive)
            self.app = self.runtime.create(self.build_container_config())
        except Exception as e:
            logger.error("app_setup_failed", fixture=fixture, error=str(e))
            self._release_proxy()
            if self._owns_client:
                self.client.close()
            raise AppRunnerError(f"Failed to set up app for fixture {fixture!r}: {e}") from e

        logger.info("app_created", fixture=fixture, image=self.app_spec.image, proxy=type(directive).__name__)

    @property
    def running(self) -> bool:
        """True while a run session is active."""
        return self._running

    def _router_settings(self) -> HarnessSettings:
        """Settings whose router address is the one the router actually publishes."""
        host = getattr(self.router, "host_ip", self.settings.router_host)
        port = getattr(self.router, "host_port", self.settings.router_port)
        return self.settings.model_copy(update={"router_host": host, "router_port": port})

    def build_container_config(self) -> dict[str, Any]:
        return self.app_spec.container_config()

    def _provision_proxy(self, directive: ProxyDirective) -> None:
        """
        Start the proxy and bind its address into the app environment.

        The address only exists once the proxy container is running, so this
        must happen before the app container is created.
        """
        if isinstance(directive, NoProxy):
            return

        if isinstance(directive, RunningEndpoint):
            address = directive.address
        else:
            script_dir = None
            if isinstance(directive, LiteralHandler):
                self._tmpdir = Path(tempfile.mkdtemp(prefix="buildpack-harness-proxy-"))
                write_proxy_script(directive.body, self._tmpdir)
                script_dir = self._tmpdir

            self.proxy = ProxyRunner(script_dir, self.runtime, self.settings)
            self.proxy.start()
            address = self.proxy.ip_address()

        self.proxy_address = address
        self.app_spec = self.app_spec.with_env(resolve_proxy_placeholders(self.app_spec.env, address))
        logger.info("proxy_ready", address=address)

    def _release_proxy(self) -> None:
        """Best-effort proxy and temp dir cleanup after a failed setup."""
        if self.proxy is not None:
            for step in (self.proxy.stop, self.proxy.destroy):
                try:
                    step()
                except Exception as e:
                    logger.error("proxy_cleanup_failed", error=str(e))
            self.proxy = None
        self._remove_tmpdir()

    def _remove_tmpdir(self) -> None:
        if self._tmpdir is not None:
            shutil.rmtree(self._tmpdir, ignore_errors=True)
            self._tmpdir = None

    def run(self, action: Callable[[], T], capture_output: bool = False) -> Any:
        """
        Start app and router, run action once the app is ready, then stop both.

        The action waits for the readiness banner for at most the grace
        period and then runs regardless, so it may occasionally start just
        before nginx accepts connections; the retry client absorbs that.

        Args:
            action: Callable run while the app is up
            capture_output: Also return the container output

        Returns:
            The action's result, or ``(result, CapturedOutput)`` when capturing

        Raises:
            AppRunnerError: If a run is already active on this instance
            Exception: Whatever the action raised, after teardown
        """
        if self._running:
            raise AppRunnerError(
                "A run is already active on this AppRunner. "
                "Overlapping runs on one instance are not supported."
            )

        self._running = True
        control = _RunControl(self.settings.readiness_sentinel, capture_output)
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="app-runner")
        action_future: Future | None = None
        container_future: Future | None = None
        failed = False

        try:
            action_future = executor.submit(self._run_action, control, action)
            container_future = executor.submit(self._stream_container, control)
            self.router.start()

            result = action_future.result()
        except BaseException:
            failed = True
            raise
        finally:
            self._teardown_run(control, action_future, container_future, executor, suppress_errors=failed)

        if capture_output:
            return result, control.output
        return result

    def _run_action(self, control: _RunControl, action: Callable[[], T]) -> T | None:
        control.gate.wait(self.settings.grace_period)
        if control.cancelled.is_set():
            logger.debug("action_skipped", reason="run torn down before readiness")
            return None
        return action()

    def _stream_container(self, control: _RunControl) -> None:
        """Start the app container and feed its output to the gate until it exits."""
        output = control.output if control.capture_output else None

        def on_chunk(stream: str, chunk: str) -> None:
            message = f"{stream}: {chunk}"
            if self.debug:
                print(message, end="" if message.endswith("\n") else "\n", flush=True)
            if output is not None:
                output.write(message)
            control.gate.observe(chunk)

        with control.start_lock:
            if control.stop_requested.is_set():
                logger.debug("container_start_skipped", reason="run torn down before start")
                return
            self.runtime.start(self.app)

        if control.stop_requested.is_set():
            return
        self.runtime.attach(self.app, on_chunk)

    def _stop_container(self, control: _RunControl) -> None:
        # Waits for an in-flight start so the stop is never a no-op on a
        # container that is about to come up.
        with control.start_lock:
            control.stop_requested.set()
            self.runtime.stop(self.app)

    def _teardown_run(
        self,
        control: _RunControl,
        action_future: Future | None,
        container_future: Future | None,
        executor: ThreadPoolExecutor,
        suppress_errors: bool,
    ) -> None:
        """
        Stop container and router, join the container task and close output.

        Every step runs even if an earlier one fails. Failures are logged and
        the first is raised only when the run itself succeeded. An action
        still waiting on the gate is cancelled and never runs.
        """
        control.cancelled.set()
        if action_future is not None:
            action_future.cancel()

        steps: list[tuple[str, Callable[[], Any]]] = [
            ("stop_container", lambda: self._stop_container(control)),
            ("stop_router", self.router.stop),
            ("join_container_task", lambda: container_future.result() if container_future else None),
            ("close_output", control.output.close),
        ]

        errors: list[Exception] = []
        for name, step in steps:
            try:
                step()
            except Exception as e:
                logger.error("run_teardown_step_failed", step=name, error=str(e))
                errors.append(e)

        # An action already past the gate is not joined; it finishes on its
        # own once its requests fail against the stopped router.
        executor.shutdown(wait=False)
        self._running = False

        if errors and not suppress_errors:
            raise errors[0]

    def get(
        self,
        path: str,
        capture_output: bool = False,
        max_retries: int | None = None,
    ) -> Any:
        """
        GET path through the router.

        Inside an active run this is a plain retried request; otherwise the
        app is started and stopped around this single request.

        Args:
            path: Path or URL; host and port default to the router
            capture_output: Also return container output. Ignored inside an
                active run, where the plain response is returned
            max_retries: Transient failure retries (settings default if None)

        Returns:
            requests.Response, or ``(response, CapturedOutput)`` when capturing
        """
        if self._running:
            if capture_output:
                logger.debug("capture_output_ignored", path=path, reason="run already active")
            return self.client.fetch(path, max_retries)

        def fetch() -> requests.Response:
            return self.client.fetch(path, max_retries)

        return self.run(fetch, capture_output=capture_output)

    def destroy(self) -> None:
        """
        Remove proxy, router and app container and the proxy temp dir.

        Each step is attempted even if earlier ones fail and the temp dir is
        always removed. Safe to call more than once.

        Raises:
            Exception: The first cleanup failure, after all steps ran
        """
        steps: list[tuple[str, Callable[[], Any]]] = []
        if self.proxy is not None:
            steps += [("stop_proxy", self.proxy.stop), ("destroy_proxy", self.proxy.destroy)]
        steps += [("destroy_router", self.router.destroy), ("delete_app", self._delete_app)]

        errors: list[Exception] = []
        try:
            for name, step in steps:
                try:
                    step()
                except Exception as e:
                    logger.error("destroy_step_failed", step=name, error=str(e))
                    errors.append(e)
        finally:
            self._remove_tmpdir()
            if self._owns_client:
                self.client.close()

        logger.info("app_destroyed", failures=len(errors))
        if errors:
            raise errors[0]

    def _delete_app(self) -> None:
        if self.app is None:
            return
        self.runtime.delete(self.app, force=True)
        self.app = None

    def __enter__(self) -> "AppRunner":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: Any) -> None:
        self.destroy()

    def __str__(self) -> str:
        return f"AppRunner(fixture={self.app_spec.fixture_path.name}, running={self._running})"
