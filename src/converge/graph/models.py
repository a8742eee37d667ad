"""Graph node models built from declared configuration."""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field


class Ref(BaseModel):
    """Reference to an attribute of another resource, resolved at plan/apply time."""
    model_config = ConfigDict(frozen=True)

    address: str = Field(..., description="Address of the referenced resource")
    attribute: str = Field(..., description="Attribute name; 'id' is the provider identity")

    def __str__(self) -> str:
        return f"{self.address}.{self.attribute}"


class Resource(BaseModel):
    """A desired resource with references resolved to Ref leaves."""
    address: str = Field(..., description="'<module>.<resource>'")
    module: str = Field(..., description="Owning module name")
    name: str = Field(..., description="Resource name within the module")
    type: str = Field(..., description="Provider resource type")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Desired attributes; may contain Ref values")
    depends_on: List[str] = Field(default_factory=list, description="Addresses this resource depends on")
    immutable: List[str] = Field(default_factory=list, description="Attributes whose change forces replacement")
    prevent_destroy: bool = Field(False, description="Refuse destroy or replacement")
    index: int = Field(..., ge=0, description="Declaration position across the environment")


class Module(BaseModel):
    """An enabled or disabled module instance after resolution."""
    name: str
    source: Optional[str] = None
    enabled: bool = True
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Resolved input values")
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Resolved output values; may contain Ref values")
    resources: List[str] = Field(default_factory=list, description="Addresses of owned resources")
