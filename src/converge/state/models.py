"""Pydantic models for persisted state and locks."""

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field

STATE_FORMAT_VERSION = 1


class ResourceState(BaseModel):
    """Last-applied record of one resource."""
    address: str = Field(..., description="'<module>.<resource>'")
    type: str = Field(..., description="Provider resource type")
    module: str = Field(..., description="Owning module name")
    identity: Optional[str] = Field(None, description="Provider-assigned identity")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Applied attributes as returned by the provider")
    dependencies: List[str] = Field(default_factory=list, description="Addresses this resource depended on when applied")

    def get_attribute(self, attribute: str) -> Any:
        """Attribute value; 'id' falls back to the identity."""
        if attribute in self.attributes:
            return self.attributes[attribute]
        if attribute == "id":
            return self.identity
        raise KeyError(attribute)


class StateSnapshot(BaseModel):
    """Versioned record of every applied resource in one environment."""
    format_version: int = Field(default=STATE_FORMAT_VERSION, description="Persisted layout version")
    serial: int = Field(default=0, ge=0, description="Monotonically increasing version")
    lineage: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Identifies one state history")
    resources: Dict[str, ResourceState] = Field(default_factory=dict, description="Resources by address")
    outputs: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Resolved module outputs")
    checksum: Optional[str] = Field(None, description="SHA-256 of the canonical body")

    def compute_checksum(self) -> str:
        body = self.model_dump(mode="json", exclude={"checksum"})
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def seal(self) -> "StateSnapshot":
        """Return a copy carrying its checksum."""
        sealed = self.model_copy(deep=True)
        sealed.checksum = sealed.compute_checksum()
        return sealed

    def verify(self) -> bool:
        return self.checksum is not None and self.checksum == self.compute_checksum()

    def get(self, address: str) -> Optional[ResourceState]:
        return self.resources.get(address)

    @property
    def is_empty(self) -> bool:
        return not self.resources


class Lock(BaseModel):
    """Exclusive token over one environment's state."""
    environment: str = Field(..., description="Locked environment")
    holder: str = Field(..., description="Who holds the lock")
    lock_id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique lock token")
    operation: str = Field(default="apply", description="Operation the lock was taken for")
    acquired_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="ISO8601 acquisition time"
    )
