"""Declarative registry of built-in providers and dotted-path loading."""

import importlib
from typing import Any, Dict, Optional
from .base import Provider
from .null import NullProvider
from ..utils.errors import SettingsError
from ..utils.logging import get_logger

logger = get_logger("provider.registry")

SUPPORTED_PROVIDERS = {
    "null": NullProvider,
}


def load_provider(name: str, options: Optional[Dict[str, Any]] = None) -> Provider:
    """
    Instantiate a provider by registered name or 'package.module:Class' path.
    
    Args:
        name: Registered name or import path
        options: Keyword arguments for the provider constructor
        
    Returns:
        Provider instance
        
    Raises:
        SettingsError: If the provider cannot be found or constructed
    """
    options = options or {}
    
    if name in SUPPORTED_PROVIDERS:
        provider_class = SUPPORTED_PROVIDERS[name]
    elif ":" in name:
        module_path, _, class_name = name.partition(":")
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            raise SettingsError(f"Cannot import provider module '{module_path}': {e}")
        provider_class = getattr(module, class_name, None)
        if provider_class is None:
            raise SettingsError(f"Provider class '{class_name}' not found in '{module_path}'")
    else:
        raise SettingsError(
            f"Unknown provider: {name}. "
            f"Use one of {', '.join(sorted(SUPPORTED_PROVIDERS))} or 'package.module:Class'"
        )
    
    if not (isinstance(provider_class, type) and issubclass(provider_class, Provider)):
        raise SettingsError(f"Provider '{name}' does not implement the Provider interface")
    
    try:
        provider = provider_class(**options)
    except TypeError as e:
        raise SettingsError(f"Invalid options for provider '{name}': {e}")
    
    logger.debug(f"Loaded provider '{name}'")
    return provider
