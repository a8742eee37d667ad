"""Provider interface and built-in providers."""

from .base import Provider
from .null import NullProvider
from .registry import SUPPORTED_PROVIDERS, load_provider

__all__ = ["Provider", "NullProvider", "SUPPORTED_PROVIDERS", "load_provider"]
