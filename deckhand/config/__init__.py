"""Deployment descriptor loading and configuration."""

from deckhand.config.loader import (
    DEFAULT_CONFIG_FILE,
    deep_merge,
    destination_path,
    load_config,
    load_raw_config,
)
from deckhand.config.types import (
    AccessoryConfig,
    BootConfig,
    DeployConfig,
    EnvConfig,
    HealthcheckConfig,
    ProxyConfig,
    RegistryConfig,
    RetryConfig,
    RoleConfig,
    SSHConfig,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "AccessoryConfig",
    "BootConfig",
    "DeployConfig",
    "EnvConfig",
    "HealthcheckConfig",
    "ProxyConfig",
    "RegistryConfig",
    "RetryConfig",
    "RoleConfig",
    "SSHConfig",
    "deep_merge",
    "destination_path",
    "load_config",
    "load_raw_config",
]
