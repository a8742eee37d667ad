"""Pydantic models for declared environment configuration."""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator

NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_-]*$"


class VariableSpec(BaseModel):
    """Declared module input. Required unless a default is given."""
    default: Any = Field(None, description="Value used when the input is not passed")
    description: Optional[str] = Field(None, description="Human-readable description")

    @property
    def required(self) -> bool:
        return "default" not in self.model_fields_set


class ResourceSpec(BaseModel):
    """A single declared resource inside a module."""
    name: str = Field(..., pattern=NAME_PATTERN, description="Resource name, unique within its module")
    type: str = Field(..., min_length=1, description="Provider resource type (e.g. 'aws_subnet')")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Desired attributes, may contain references")
    depends_on: List[str] = Field(default_factory=list, description="Sibling resource names or 'module.<name>'")
    immutable: List[str] = Field(default_factory=list, description="Attributes whose change forces replacement")
    prevent_destroy: bool = Field(False, description="Refuse plans that destroy or replace this resource")


class ModuleSpec(BaseModel):
    """A module instance as declared in an environment."""
    name: str = Field(..., pattern=NAME_PATTERN, description="Module instance name")
    source: Optional[str] = Field(None, description="Path to the module definition")
    enabled: bool = Field(True, description="Disabled modules contribute nothing to the graph")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Input values or 'module.<m>.<output>' references")
    variables: Optional[Dict[str, VariableSpec]] = Field(None, description="Declared inputs; None accepts any input")
    resources: List[ResourceSpec] = Field(default_factory=list, description="Resources owned by the module")
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Output expressions")

    @field_validator("resources")
    @classmethod
    def _unique_resource_names(cls, resources: List[ResourceSpec]) -> List[ResourceSpec]:
        seen = set()
        for resource in resources:
            if resource.name in seen:
                raise ValueError(f"duplicate resource name '{resource.name}'")
            seen.add(resource.name)
        return resources


class EnvironmentSpec(BaseModel):
    """Declared configuration for one deployment environment."""
    environment: Optional[str] = Field(None, description="Environment name (state key)")
    modules: List[ModuleSpec] = Field(default_factory=list, description="Module instances in declaration order")

    @model_validator(mode="after")
    def _unique_module_names(self) -> "EnvironmentSpec":
        seen = set()
        for module in self.modules:
            if module.name in seen:
                raise ValueError(f"duplicate module name '{module.name}'")
            seen.add(module.name)
        return self

    def get_module(self, name: str) -> Optional[ModuleSpec]:
        for module in self.modules:
            if module.name == name:
                return module
        return None
