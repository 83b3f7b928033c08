from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from locus.core.config import ConfigService


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    location_file = tmp_path / "location"
    config_yaml = f"""
    location:
      key: "laptop"

    hub:
      sweep_interval_seconds: 0.5
      subscriber_queue_size: 4

    providers:
      geolocation_file:
        path: "{location_file.as_posix()}"
        period_seconds: 30
        ttl_seconds: 600
      geoip:
        enabled: true
        timeout_seconds: 2
      ichnaea:
        enabled: false
      geoclue:
        enabled: false

    sleep_monitor:
      debounce_window_seconds: 3
      network_wakeup_delay_seconds: 1

    logging:
      level: "DEBUG"
    """
    _write_yaml(config_dir / "config.yaml", config_yaml)
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path) -> ConfigService:
    """Return a ConfigService wired to the temporary configuration."""

    return ConfigService(config_dir=sample_config_dir)
