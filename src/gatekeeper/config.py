"""
Configuration management for USB Gatekeeper.

Handles loading, validation, and access to configuration. Paths are
carried as explicit values and injected into collaborators at startup.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/usb-gatekeeper/gatekeeper.yaml")
DEFAULT_WHITELIST_PATH = Path.home() / ".usb-gatekeeper" / "whitelist.yaml"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    file: str | None = None


@dataclass
class StorageConfig:
    """Whitelist storage settings."""

    whitelist_path: str = str(DEFAULT_WHITELIST_PATH)


@dataclass
class InventoryConfig:
    """Host device inventory settings."""

    backend: str = "auto"


@dataclass
class ControlConfig:
    """Device control settings."""

    backend: str = "auto"
    devcon_path: str | None = None
    timeout: float = 30.0
    max_workers: int = 4


@dataclass
class PolicyConfig:
    """Policy engine settings."""

    # Undo a whitelist addition whose implicit unblock fails
    rollback_failed_unblock: bool = False


@dataclass
class APIConfig:
    """API server settings."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    auth_mode: str = "api_key"
    api_key: str | None = None

    def __post_init__(self) -> None:
        # Load API key from environment if not set
        if self.api_key is None:
            self.api_key = os.environ.get("GATEKEEPER_API_KEY")


@dataclass
class GatekeeperConfig:
    """Main configuration container."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    inventory: InventoryConfig = field(default_factory=InventoryConfig)
    control: ControlConfig = field(default_factory=ControlConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    api: APIConfig = field(default_factory=APIConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatekeeperConfig:
        """Create configuration from dictionary."""
        return cls(
            logging=LoggingConfig(**(data.get("logging") or {})),
            storage=StorageConfig(**(data.get("storage") or {})),
            inventory=InventoryConfig(**(data.get("inventory") or {})),
            control=ControlConfig(**(data.get("control") or {})),
            policy=PolicyConfig(**(data.get("policy") or {})),
            api=APIConfig(**(data.get("api") or {})),
        )


def load_config(path: str | Path | None = None) -> GatekeeperConfig:
    """
    Load configuration from YAML file.

    Args:
        path: Path to configuration file. If None, uses default paths.

    Returns:
        GatekeeperConfig instance with loaded settings.

    Raises:
        FileNotFoundError: If an explicit config file does not exist.
        yaml.YAMLError: If config file is invalid YAML.
    """
    if path is None:
        candidates = [
            DEFAULT_CONFIG_PATH,
            Path("config/gatekeeper.yaml"),
            Path("gatekeeper.yaml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None:
        return GatekeeperConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return GatekeeperConfig.from_dict(data)


def validate_config(config: GatekeeperConfig) -> list[str]:
    """
    Validate configuration and return list of errors.

    Returns:
        List of error messages. Empty list if valid.
    """
    errors: list[str] = []

    valid_log_levels = {"debug", "info", "warning", "error"}
    if config.logging.level not in valid_log_levels:
        errors.append(f"Invalid log level: {config.logging.level}")

    if not config.storage.whitelist_path:
        errors.append("Whitelist path must not be empty")

    valid_inventory = {"auto", "wmi", "udev"}
    if config.inventory.backend not in valid_inventory:
        errors.append(f"Invalid inventory backend: {config.inventory.backend}")

    valid_control = {"auto", "devcon", "sysfs"}
    if config.control.backend not in valid_control:
        errors.append(f"Invalid control backend: {config.control.backend}")

    if config.control.timeout <= 0:
        errors.append(f"Invalid control timeout: {config.control.timeout}")

    if config.control.max_workers < 1:
        errors.append(f"Invalid max_workers: {config.control.max_workers}")

    if not (1 <= config.api.port <= 65535):
        errors.append(f"Invalid API port: {config.api.port}")

    valid_auth_modes = {"none", "api_key"}
    if config.api.auth_mode not in valid_auth_modes:
        errors.append(f"Invalid auth_mode: {config.api.auth_mode}")
    elif (
        config.api.enabled
        and config.api.auth_mode == "api_key"
        and not config.api.api_key
    ):
        errors.append("API key required when auth_mode is api_key")

    return errors


def setup_logging(level: str = "info", log_file: str | None = None) -> None:
    """Configure root logging for a front-end process."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
    )
