"""Null provider: records nothing remotely and echoes desired attributes."""

import uuid
from typing import Any, Dict, Tuple
from .base import Provider
from ..utils.logging import get_logger

logger = get_logger("provider.null")


class NullProvider(Provider):
    """Provider for dry runs and local experimentation."""
    
    name = "null"
    
    def __init__(self, id_prefix: str = ""):
        self.id_prefix = id_prefix
    
    def create(self, resource_type: str, attributes: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        identity = f"{self.id_prefix}{resource_type}-{uuid.uuid4().hex[:12]}"
        logger.debug(f"Created {resource_type} {identity}")
        return identity, dict(attributes)
    
    def update(self, resource_type: str, identity: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(f"Updated {resource_type} {identity}")
        return dict(attributes)
    
    def destroy(self, resource_type: str, identity: str) -> None:
        logger.debug(f"Destroyed {resource_type} {identity}")
