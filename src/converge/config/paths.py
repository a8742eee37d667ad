"""Locations of the settings layers."""

from pathlib import Path
from typing import List, Optional

SETTINGS_DIR = ".converge"
SETTINGS_FILE = "config.yaml"


def get_defaults_path() -> Path:
    """Packaged defaults shipped with converge."""
    return Path(__file__).parent / "defaults.yaml"


def get_user_config_path() -> Path:
    """~/.converge/config.yaml"""
    return Path.home() / SETTINGS_DIR / SETTINGS_FILE


def get_project_config_path(start: Optional[Path] = None) -> Optional[Path]:
    """.converge/config.yaml under start (default: cwd), if present."""
    candidate = (start or Path.cwd()) / SETTINGS_DIR / SETTINGS_FILE
    return candidate if candidate.is_file() else None


def get_layer_paths() -> List[Path]:
    """Existing user/project settings files, lowest precedence first."""
    layers = []
    user = get_user_config_path()
    if user.is_file():
        layers.append(user)
    project = get_project_config_path()
    if project is not None and project.resolve() != user.resolve():
        layers.append(project)
    return layers
