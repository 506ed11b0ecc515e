"""
Configuration management for GeoProfile.

Handles loading, validation, and access to daemon configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/geoprofile/geoprofile.yaml")
DEFAULT_DB_PATH = Path("/var/lib/geoprofile/geoprofile.db")
DEFAULT_MDM_URL = "https://a.simplemdm.com/api/v1"


@dataclass
class DaemonConfig:
    """Daemon general settings."""

    log_level: str = "info"
    log_file: str | None = None
    poll_interval: float = 30.0


@dataclass
class StoreConfig:
    """Policy and history store settings."""

    path: str = str(DEFAULT_DB_PATH)
    wal_mode: bool = True
    history_limit: int = 100


@dataclass
class DeviceAPIConfig:
    """MDM device API settings."""

    base_url: str = DEFAULT_MDM_URL
    api_key: str | None = None
    timeout: float = 10.0
    page_size: int = 100

    def __post_init__(self) -> None:
        # Load API key from environment if not set
        if self.api_key is None:
            self.api_key = os.environ.get("SIMPLEMDM_API_KEY")


@dataclass
class ReconcileConfig:
    """Reconciliation engine settings."""

    freshness_window: int = 3600  # seconds
    check_installed: bool = True


@dataclass
class APIConfig:
    """API server settings."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )
    api_key: str | None = None

    def __post_init__(self) -> None:
        # Load API key from environment if not set
        if self.api_key is None:
            self.api_key = os.environ.get("GEOPROFILE_API_KEY")


@dataclass
class NotifyConfig:
    """Push notification settings (ntfy)."""

    enabled: bool = False
    server: str = "https://ntfy.sh"
    topic: str = "geo-profile-dashboard"
    priority: int = 3


@dataclass
class GeoProfileConfig:
    """Main configuration container."""

    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    device_api: DeviceAPIConfig = field(default_factory=DeviceAPIConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    api: APIConfig = field(default_factory=APIConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeoProfileConfig:
        """Create configuration from dictionary."""
        return cls(
            daemon=DaemonConfig(**data.get("daemon", {})),
            store=StoreConfig(**data.get("store", {})),
            device_api=DeviceAPIConfig(**data.get("device_api", {})),
            reconcile=ReconcileConfig(**data.get("reconcile", {})),
            api=APIConfig(**data.get("api", {})),
            notify=NotifyConfig(**data.get("notify", {})),
        )


def load_config(path: str | Path | None = None) -> GeoProfileConfig:
    """
    Load configuration from YAML file.

    Args:
        path: Path to configuration file. If None, uses default paths.

    Returns:
        GeoProfileConfig instance with loaded settings.

    Raises:
        FileNotFoundError: If an explicit config file does not exist.
        yaml.YAMLError: If config file is invalid YAML.
    """
    if path is None:
        candidates = [
            DEFAULT_CONFIG_PATH,
            Path("config/geoprofile.yaml"),
            Path("geoprofile.yaml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None:
        return GeoProfileConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return GeoProfileConfig.from_dict(data)


def validate_config(config: GeoProfileConfig) -> list[str]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate.

    Returns:
        List of error messages. Empty list if valid.
    """
    errors: list[str] = []

    valid_log_levels = {"debug", "info", "warning", "error"}
    if config.daemon.log_level not in valid_log_levels:
        errors.append(f"Invalid log_level: {config.daemon.log_level}")

    if config.daemon.poll_interval <= 0:
        errors.append(f"Invalid poll_interval: {config.daemon.poll_interval}")

    if config.store.history_limit < 1:
        errors.append(f"Invalid history_limit: {config.store.history_limit}")

    if not config.device_api.base_url.startswith(("http://", "https://")):
        errors.append(f"Invalid device API base_url: {config.device_api.base_url}")

    if config.device_api.timeout <= 0:
        errors.append(f"Invalid device API timeout: {config.device_api.timeout}")

    if not (1 <= config.device_api.page_size <= 100):
        errors.append(f"Invalid device API page_size: {config.device_api.page_size}")

    if config.reconcile.freshness_window < 0:
        errors.append(f"Invalid freshness_window: {config.reconcile.freshness_window}")

    if not (1 <= config.api.port <= 65535):
        errors.append(f"Invalid API port: {config.api.port}")

    if not (1 <= config.notify.priority <= 5):
        errors.append(f"Invalid notify priority: {config.notify.priority}")

    return errors
