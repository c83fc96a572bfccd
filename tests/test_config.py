"""Unit tests for harness settings and fixture path resolution."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from buildpack_harness.config import HarnessSettings, fixtures_path, get_settings


@pytest.mark.unit
class TestHarnessSettings:
    def test_defaults(self, monkeypatch) -> None:
        for name in ("HARNESS_ROUTER_HOST", "HARNESS_ROUTER_PORT", "HARNESS_GRACE_PERIOD"):
            monkeypatch.delenv(name, raising=False)

        settings = HarnessSettings()

        assert settings.router_host == "127.0.0.1"
        assert settings.router_port == 8080
        assert settings.proxy_port == 9292
        assert settings.grace_period == 0.5
        assert settings.retry_backoff == 0.01
        assert settings.max_retries == 30
        assert settings.readiness_sentinel == "Starting nginx..."

    def test_environment_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("HARNESS_ROUTER_PORT", "9000")
        monkeypatch.setenv("HARNESS_APP_IMAGE", "static-buildpack:ci")
        monkeypatch.setenv("HARNESS_DEBUG", "true")

        settings = HarnessSettings()

        assert settings.router_port == 9000
        assert settings.app_image == "static-buildpack:ci"
        assert settings.debug is True

    def test_invalid_port_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HarnessSettings(router_port=70000)

    def test_empty_sentinel_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HarnessSettings(readiness_sentinel="")

    def test_get_settings_cached(self) -> None:
        assert get_settings() is get_settings()


@pytest.mark.unit
class TestFixturesPath:
    def test_relative_fixture_resolved(self, tmp_path) -> None:
        settings = HarnessSettings(fixtures_dir=tmp_path)

        assert fixtures_path("simple", settings) == (tmp_path / "simple").resolve()

    def test_absolute_fixture_kept(self, tmp_path) -> None:
        settings = HarnessSettings(fixtures_dir=Path("/nowhere"))

        assert fixtures_path(str(tmp_path), settings) == tmp_path.resolve()

    def test_result_is_absolute(self) -> None:
        settings = HarnessSettings(fixtures_dir=Path("tests/fixtures"))

        assert fixtures_path("simple", settings).is_absolute()
