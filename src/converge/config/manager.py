"""Settings layer loading and merging (user, then project)."""

from pathlib import Path
from typing import Dict, Any
import yaml
from .paths import get_layer_paths
from ..utils.errors import SettingsError
from ..utils.logging import get_logger

logger = get_logger("config.manager")


def read_settings_file(path: Path) -> Dict[str, Any]:
    """
    Parse one settings YAML file.

    Raises:
        SettingsError: If the file is unreadable, invalid YAML or not a mapping
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid YAML in config file {path}: {e}")
    except OSError as e:
        raise SettingsError(f"Error loading config file {path}: {e}")

    if not isinstance(data, dict):
        raise SettingsError(f"Config file {path} must contain a dictionary")
    return data


def load_config() -> Dict[str, Any]:
    """
    Merge the user and project settings layers.

    Returns:
        Settings tree; project values override user values key by key
    """
    config: Dict[str, Any] = {}
    for path in get_layer_paths():
        deep_merge(config, read_settings_file(path))
        logger.debug(f"Merged settings layer {path}")
    return config


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            deep_merge(base[key], value)
        else:
            base[key] = value
