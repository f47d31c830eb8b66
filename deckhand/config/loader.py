"""Descriptor loading, deep merge, and destination overlays."""

import os

import yaml

from deckhand.config.types import DeployConfig
from deckhand.errors import ConfigError

DEFAULT_CONFIG_FILE = os.path.join("config", "deploy.yml")


def deep_merge(base, override):
    """Recursive dict merge. Override wins for scalars."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def destination_path(config_file, destination):
    """config/deploy.yml + staging -> config/deploy.staging.yml"""
    root, ext = os.path.splitext(config_file)
    return f"{root}.{destination}{ext or '.yml'}"


def _read_yaml(path):
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def load_raw_config(config_file=DEFAULT_CONFIG_FILE, destination=None):
    """Load the descriptor dict, deep-merging the destination overlay if given."""
    config = _read_yaml(config_file)
    if destination is not None:
        overlay_path = destination_path(config_file, destination)
        if not os.path.isfile(overlay_path):
            raise ConfigError(f"Unknown destination '{destination}': {overlay_path} not found")
        config = deep_merge(config, _read_yaml(overlay_path))
    return config


def load_config(config_file=DEFAULT_CONFIG_FILE, destination=None) -> DeployConfig:
    """Load and validate the deployment descriptor."""
    return DeployConfig.from_dict(load_raw_config(config_file, destination))
