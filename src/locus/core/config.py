"""
Dynaconf-powered configuration loader with Pydantic validation.

The configuration service loads the layered YAML files from the config
directory, lets `LOCUS_`-prefixed environment variables override them,
validates the merged result and hands out provider instances and
module-friendly `ModuleConfig` objects.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..providers import (
    GeoClueProvider,
    GeoIpProvider,
    GeolocationFileProvider,
    IchnaeaProvider,
    PollingProvider,
)
from ..providers.geoclue import ACCURACY_LEVEL_EXACT
from ..providers.geoip import DEFAULT_ENDPOINT as GEOIP_ENDPOINT
from ..providers.ichnaea import DEFAULT_ENDPOINT as ICHNAEA_ENDPOINT
from .contracts import BaseModule, ModuleConfig


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        return value
    return {}


CONFIG_FILENAMES = ("config.yaml", "secrets.yaml")
_REPO_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_DIR = _REPO_ROOT / "config"


class ConfigError(RuntimeError):
    """Raised when configuration files are missing or invalid."""


class LocationSettings(BaseModel):
    """Which logical subject the service locates."""

    model_config = ConfigDict(extra="ignore")

    key: str = Field(default="host", min_length=1)


class HubSettings(BaseModel):
    """Fusion hub tuning."""

    model_config = ConfigDict(extra="ignore")

    sweep_interval_seconds: float = Field(default=1.0, gt=0.0)
    subscriber_queue_size: int = Field(default=16, ge=1)


class PollingProviderSettings(BaseModel):
    """Options shared by every polling provider."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = Field(default=True)
    period_seconds: float = Field(gt=0.0)
    ttl_seconds: float = Field(gt=0.0)
    retry_period_seconds: float | None = Field(
        default=None, gt=0.0, description="Delay after a failed read; defaults to the period."
    )
    tolerance: float = Field(
        default=0.0, ge=0.0, description="Noise tolerance used to suppress unchanged readings."
    )

    def polling_kwargs(self) -> dict[str, Any]:
        return {
            "period": self.period_seconds,
            "ttl": self.ttl_seconds,
            "retry_period": self.retry_period_seconds,
            "tolerance": self.tolerance,
        }


class FileProviderSettings(PollingProviderSettings):
    """Operator-maintained location file."""

    path: Path = Field(default=Path("~/.config/locus/location"))
    period_seconds: float = Field(default=120.0, gt=0.0)
    ttl_seconds: float = Field(default=900.0, gt=0.0)

    @field_validator("path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value
        return Path(str(value))


class HttpProviderSettings(PollingProviderSettings):
    """IP geolocation web service."""

    endpoint: str
    period_seconds: float = Field(default=1800.0, gt=0.0)
    ttl_seconds: float = Field(default=3600.0, gt=0.0)
    timeout_seconds: float = Field(default=5.0, gt=0.0)

    @field_validator("endpoint")
    @classmethod
    def _require_http(cls, value: str) -> str:
        if not value.lower().startswith(("https://", "http://")):
            raise ValueError("endpoint must be an http(s) URL")
        return value


class GeoIpSettings(HttpProviderSettings):
    endpoint: str = Field(default=GEOIP_ENDPOINT)


class IchnaeaSettings(HttpProviderSettings):
    endpoint: str = Field(default=ICHNAEA_ENDPOINT)
    consider_ip: bool = Field(default=True)


class GeoClueSettings(PollingProviderSettings):
    """On-device positioning via GeoClue2."""

    enabled: bool = Field(default=False)
    desktop_id: str = Field(default="locus")
    accuracy_level: int = Field(default=ACCURACY_LEVEL_EXACT, ge=0, le=8)
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    period_seconds: float = Field(default=300.0, gt=0.0)
    ttl_seconds: float = Field(default=1800.0, gt=0.0)


class ProvidersSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    geolocation_file: FileProviderSettings = Field(default_factory=FileProviderSettings)
    geoip: GeoIpSettings = Field(default_factory=GeoIpSettings)
    ichnaea: IchnaeaSettings = Field(default_factory=IchnaeaSettings)
    geoclue: GeoClueSettings = Field(default_factory=GeoClueSettings)


class SleepMonitorSettings(BaseModel):
    """Suspend/resume monitor timings."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = Field(default=True)
    bus_reconnect_delay_seconds: float = Field(default=5.0, gt=0.0)
    subscribe_retry_delay_seconds: float = Field(default=10.0, gt=0.0)
    reconnect_delay_seconds: float = Field(default=2.0, gt=0.0)
    debounce_window_seconds: float = Field(default=2.0, ge=0.0)
    network_wakeup_delay_seconds: float = Field(default=5.0, ge=0.0)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = Field(default="INFO")
    file: Path | None = Field(default=None)
    max_mb: int = Field(default=10, ge=1)
    backup_count: int = Field(default=3, ge=0)


class ConfigSnapshot(BaseModel):
    """
    Validated, strongly typed view of the merged configuration.

    Provides helpers to build providers and per-module configuration.
    """

    model_config = ConfigDict(extra="ignore")

    location: LocationSettings = Field(default_factory=LocationSettings)
    hub: HubSettings = Field(default_factory=HubSettings)
    providers: ProvidersSettings = Field(default_factory=ProvidersSettings)
    sleep_monitor: SleepMonitorSettings = Field(default_factory=SleepMonitorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def build_providers(
        self, *, http_client: httpx.AsyncClient | None = None
    ) -> list[PollingProvider]:
        """Instantiate every enabled provider in a stable order."""
        settings = self.providers
        providers: list[PollingProvider] = []
        if settings.geoclue.enabled:
            providers.append(
                GeoClueProvider(
                    desktop_id=settings.geoclue.desktop_id,
                    accuracy_level=settings.geoclue.accuracy_level,
                    timeout=settings.geoclue.timeout_seconds,
                    **settings.geoclue.polling_kwargs(),
                )
            )
        if settings.geolocation_file.enabled:
            providers.append(
                GeolocationFileProvider(
                    settings.geolocation_file.path,
                    **settings.geolocation_file.polling_kwargs(),
                )
            )
        if settings.geoip.enabled:
            providers.append(
                GeoIpProvider(
                    endpoint=settings.geoip.endpoint,
                    client=http_client,
                    timeout=settings.geoip.timeout_seconds,
                    **settings.geoip.polling_kwargs(),
                )
            )
        if settings.ichnaea.enabled:
            providers.append(
                IchnaeaProvider(
                    endpoint=settings.ichnaea.endpoint,
                    consider_ip=settings.ichnaea.consider_ip,
                    client=http_client,
                    timeout=settings.ichnaea.timeout_seconds,
                    **settings.ichnaea.polling_kwargs(),
                )
            )
        return providers

    def module_config(self, module_name: str) -> ModuleConfig:
        """Produce a ModuleConfig tailored for the requested module."""
        if module_name == "modules.refresh.location_refresher":
            return ModuleConfig(options={"key": self.location.key})
        if module_name == "modules.power.sleep_monitor":
            options = self.sleep_monitor.model_dump()
            return ModuleConfig(enabled=self.sleep_monitor.enabled, options=options)
        raise KeyError(f"No module configuration defined for {module_name}")


class ConfigService:
    """
    Runtime facade for loading, validating, and distributing configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        if settings is None:
            settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
            existing_files = [str(path) for path in settings_files if path.exists()]
            if not existing_files:
                raise ConfigError(
                    f"No configuration files found in {self._config_dir}. "
                    "Expected at least config.yaml."
                )
            settings = Dynaconf(
                envvar_prefix="LOCUS",
                settings_files=existing_files,
                load_dotenv=True,
                environments=False,
            )
        self._settings = settings
        self._snapshot = self._build_snapshot()

    @property
    def snapshot(self) -> ConfigSnapshot:
        """Latest validated configuration snapshot."""
        return self._snapshot

    def refresh(self) -> ConfigSnapshot:
        """Reload configuration files and rebuild the snapshot."""
        self._settings.reload()
        self._snapshot = self._build_snapshot()
        return self._snapshot

    def module_config_for(self, module: str | type[BaseModule] | BaseModule) -> ModuleConfig:
        """
        Convenient wrapper around ConfigSnapshot.module_config that accepts
        module names, classes, or instances.
        """
        if isinstance(module, str):
            module_name = module
        else:
            module_name = module.name
        return self._snapshot.module_config(module_name)

    def _build_snapshot(self) -> ConfigSnapshot:
        data = self._extract_snapshot_data(self._settings.as_dict())
        try:
            return ConfigSnapshot.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Configuration validation failed: {exc}") from exc

    def _extract_snapshot_data(self, raw: dict[str, Any]) -> dict[str, Any]:
        providers_section = _section(raw, "providers")
        return {
            "location": _section(raw, "location"),
            "hub": _section(raw, "hub"),
            "providers": {
                name: _section(providers_section, name)
                for name in ("geolocation_file", "geoip", "ichnaea", "geoclue")
            },
            "sleep_monitor": _section(raw, "sleep_monitor"),
            "logging": _section(raw, "logging"),
        }


__all__ = [
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "FileProviderSettings",
    "GeoClueSettings",
    "GeoIpSettings",
    "HubSettings",
    "IchnaeaSettings",
    "LocationSettings",
    "LoggingSettings",
    "ProvidersSettings",
    "SleepMonitorSettings",
]
