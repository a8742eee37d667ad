"""Abstract base class for resource providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Tuple


class Provider(ABC):
    """
    Abstract interface for providers.
    
    The engine treats a provider as an opaque capability set. Providers:
    - Create, update and destroy single resources
    - Return the attributes actually applied (including computed ones)
    - Signal failures by raising RetryableProviderError or FatalProviderError
    
    Any other exception raised by a provider is treated as fatal.
    Providers may be called from several worker threads at once when
    parallelism is enabled.
    """
    
    name = "abstract"
    
    @abstractmethod
    def create(self, resource_type: str, attributes: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """
        Create a resource.
        
        Args:
            resource_type: Provider resource type
            attributes: Desired attributes, fully resolved
            
        Returns:
            (identity, applied attributes)
        """
        pass
    
    @abstractmethod
    def update(self, resource_type: str, identity: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a resource in place.
        
        Returns:
            Applied attributes
        """
        pass
    
    @abstractmethod
    def destroy(self, resource_type: str, identity: str) -> None:
        """Destroy a resource. Destroying an already-absent resource succeeds."""
        pass
