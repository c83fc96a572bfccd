"""
Configuration for the buildpack integration harness.

Settings are read from environment variables prefixed with ``HARNESS_`` so a
CI job can point the harness at freshly built images without code changes,
e.g. ``HARNESS_APP_IMAGE=static-buildpack:ci``.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

PROXY_IP_PLACEHOLDER = "PROXY_IP_ADDRESS"
READINESS_SENTINEL = "Starting nginx..."


class HarnessSettings(BaseSettings):
    """Images, addresses and timing knobs used by the runners."""

    model_config = SettingsConfigDict(env_prefix="HARNESS_", extra="ignore")

    # Images
    app_image: str = "static-buildpack:latest"
    proxy_image: str = "buildpack-harness-proxy:latest"
    router_image: str = "buildpack-harness-router:latest"

    # Fixture applications mounted into the app container at /src
    fixtures_dir: Path = Path("tests/fixtures")

    # Router is the fixed request target for the retry client
    router_host: str = "127.0.0.1"
    router_port: int = Field(default=8080, gt=0, lt=65536)
    proxy_port: int = Field(default=9292, gt=0, lt=65536)

    # Readiness and retry timing (seconds)
    grace_period: float = Field(default=0.5, ge=0.0)
    retry_backoff: float = Field(default=0.01, ge=0.0)
    max_retries: int = Field(default=30, ge=0)
    request_timeout: float = Field(default=10.0, gt=0.0)
    stop_timeout: int = Field(default=5, ge=0)
    startup_timeout: float = Field(default=30.0, gt=0.0)

    readiness_sentinel: str = READINESS_SENTINEL
    debug: bool = False

    @field_validator("readiness_sentinel")
    @classmethod
    def _sentinel_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("readiness_sentinel must not be empty")
        return value


@lru_cache(maxsize=1)
def get_settings() -> HarnessSettings:
    """Return the process-wide settings, loaded once from the environment."""
    settings = HarnessSettings()
    logger.debug(
        f"Harness settings loaded: app_image={settings.app_image}, "
        f"router={settings.router_host}:{settings.router_port}"
    )
    return settings


def fixtures_path(fixture: str, settings: HarnessSettings | None = None) -> Path:
    """
    Resolve a fixture name to the absolute directory bound into the app container.

    Absolute paths are returned unchanged; names are looked up under
    ``fixtures_dir``.
    """
    settings = settings or get_settings()
    path = Path(fixture)
    if not path.is_absolute():
        path = settings.fixtures_dir / fixture
    return path.resolve()
