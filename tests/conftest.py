"""
Shared fixtures for buildpack harness unit tests.

FakeRuntime stands in for the docker-backed runtime: attach replays canned
output chunks and then blocks until the container is stopped, the same way
a real attach stream only ends when the container exits. Like docker, stop
is a no-op on a container that was never started.
"""

import threading
import time
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

from buildpack_harness.config import HarnessSettings
from buildpack_harness.retry_client import RetryClient

FIXTURES_DIR = Path(__file__).parent / "fixtures"
PROXY_ADDRESS = "172.17.0.5"
READY_CHUNK = ("stdout", "app: Starting nginx...\n")


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests needing a Docker daemon")
    config.addinivalue_line("markers", "slow: tests taking more than a few seconds")


class FakeRuntime:
    """In-memory container runtime recording every lifecycle call."""

    def __init__(
        self,
        chunks=(READY_CHUNK,),
        chunk_delay: float = 0.0,
        start_delay: float = 0.0,
        proxy_address: str = PROXY_ADDRESS,
    ):
        self.chunks = list(chunks)
        self.chunk_delay = chunk_delay
        self.start_delay = start_delay
        self.started = False
        self.proxy_address = proxy_address
        self.calls: list = []
        self.created_configs: list[dict] = []
        self.run_kwargs: dict = {}
        self.stopped = threading.Event()
        self.client = Mock()

        self.create_error: Exception | None = None
        self.stop_error: Exception | None = None
        self.attach_error: Exception | None = None

    def create(self, config):
        self.calls.append("create")
        if self.create_error:
            raise self.create_error
        self.created_configs.append(config)
        return Mock(name="app-container")

    def start(self, container):
        if self.start_delay:
            time.sleep(self.start_delay)
        self.calls.append("start")
        self.started = True

    def attach(self, container, on_chunk):
        self.calls.append("attach")
        if self.attach_error:
            raise self.attach_error
        for stream, chunk in self.chunks:
            if self.chunk_delay:
                time.sleep(self.chunk_delay)
            self.calls.append(("chunk", chunk))
            on_chunk(stream, chunk)
        self.stopped.wait(5)

    def stop(self, container):
        self.calls.append("stop")
        if self.started:
            self.stopped.set()
        if self.stop_error:
            raise self.stop_error

    def delete(self, container, force=False):
        self.calls.append(("delete", force))

    def run_detached(self, image, name, **kwargs):
        self.calls.append(("run_detached", name))
        self.run_kwargs = kwargs
        return Mock(name=name)

    def wait_until_running(self, container, timeout):
        self.calls.append("wait_until_running")

    def ip_address(self, container):
        return self.proxy_address

    def count(self, call) -> int:
        return sum(1 for item in self.calls if item == call)


@pytest.fixture
def settings() -> HarnessSettings:
    return HarnessSettings(fixtures_dir=FIXTURES_DIR, grace_period=0.5)


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def router() -> Mock:
    return Mock(spec=["start", "stop", "destroy"])


@pytest.fixture
def response() -> Mock:
    return Mock(spec=requests.Response, status_code=200, text="ok")


@pytest.fixture
def session(response) -> Mock:
    session = Mock(spec=requests.Session)
    session.get.return_value = response
    return session


@pytest.fixture
def client(settings, session) -> RetryClient:
    return RetryClient(settings, session=session)
