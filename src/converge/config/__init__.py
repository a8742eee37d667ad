"""Configuration module: load and validate engine settings."""

from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field, ValidationError
from ..utils.errors import SettingsError
from ..utils.logging import get_logger
from .manager import load_config, deep_merge, read_settings_file
from .paths import get_defaults_path, get_user_config_path, get_project_config_path
from .environment import resolve_environment

logger = get_logger("config")


class StateSettings(BaseModel):
    """Where snapshots and locks live."""
    backend: str = Field(default="local", description="State backend: 'local' or 'memory'")
    path: str = Field(default=".converge/state", description="Root directory for the local backend")


class LockSettings(BaseModel):
    """Lock acquisition behavior."""
    timeout_seconds: float = Field(default=300.0, ge=0, description="Fallback lock acquisition timeout")
    poll_interval_seconds: float = Field(default=1.0, gt=0, description="Delay between acquisition attempts")


class RetrySettings(BaseModel):
    """Backoff policy for retryable provider errors."""
    max_attempts: int = Field(default=5, ge=1, description="Total attempts per operation")
    base_delay_seconds: float = Field(default=1.0, ge=0, description="Delay before the first retry")
    max_delay_seconds: float = Field(default=30.0, ge=0, description="Upper bound on any single delay")


class ApplySettings(BaseModel):
    """Apply executor behavior."""
    parallelism: int = Field(default=1, ge=1, description="Maximum concurrent provider operations")


class ProviderSettings(BaseModel):
    """Provider selection."""
    name: str = Field(default="null", description="Registered provider name or 'package.module:Class'")
    options: Dict[str, Any] = Field(default_factory=dict, description="Keyword arguments for the provider")


class EngineSettings(BaseModel):
    """Validated engine settings tree."""
    state: StateSettings = Field(default_factory=StateSettings)
    lock: LockSettings = Field(default_factory=LockSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    apply: ApplySettings = Field(default_factory=ApplySettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)


def load_engine_settings(config_path: Optional[str] = None, use_user_config: bool = True) -> EngineSettings:
    """
    Load engine settings.
    
    Packaged defaults are overlaid with the user/project config tree and then
    with an explicit config file, if given.
    
    Args:
        config_path: Optional explicit settings YAML file
        use_user_config: Whether to merge ~/.converge and ./.converge configs
        
    Returns:
        Validated EngineSettings
        
    Raises:
        SettingsError: If a config file cannot be loaded or fails validation
    """
    settings = read_settings_file(get_defaults_path())
    
    if use_user_config:
        deep_merge(settings, load_config())
    
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise SettingsError(f"Config file not found: {config_path}")
        deep_merge(settings, read_settings_file(path))
        logger.info(f"Loaded configuration from {path}")
    
    try:
        return EngineSettings(**settings)
    except ValidationError as e:
        raise SettingsError(f"Invalid engine settings: {e}")


__all__ = [
    "EngineSettings",
    "StateSettings",
    "LockSettings",
    "RetrySettings",
    "ApplySettings",
    "ProviderSettings",
    "load_engine_settings",
    "load_config",
    "deep_merge",
    "resolve_environment",
    "get_user_config_path",
    "get_project_config_path",
]
