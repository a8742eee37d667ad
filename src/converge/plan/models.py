"""Pydantic models for change-sets."""

from enum import Enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


class ChangeAction(str, Enum):
    """Operation planned for one resource."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DESTROY = "DESTROY"
    NO_OP = "NO_OP"


class Change(BaseModel):
    """One planned operation on one resource."""
    address: str = Field(..., description="Resource address")
    type: str = Field(..., description="Provider resource type")
    module: str = Field(..., description="Owning module name")
    action: ChangeAction = Field(..., description="Planned operation")
    identity: Optional[str] = Field(None, description="Current provider identity, if the resource exists")
    before: Optional[Dict[str, Any]] = Field(None, description="Attributes recorded in state")
    after: Optional[Dict[str, Any]] = Field(None, description="Desired attributes; unknown values are placeholders")
    changed_attributes: List[str] = Field(default_factory=list, description="Declared attributes that differ")
    requires_replace: List[str] = Field(default_factory=list, description="Immutable attributes forcing replacement")
    replacement: bool = Field(False, description="Part of a destroy-then-create replacement")
    dependencies: List[str] = Field(default_factory=list, description="Direct dependencies recorded into state")
    waits_for: List[str] = Field(default_factory=list, description="Same-phase changes that must finish first")
    deferred: bool = Field(
        False, description="Destroy runs after creates and updates, once kept resources stop referencing it"
    )
    template: Dict[str, Any] = Field(default_factory=dict, exclude=True, description="Desired attributes with references")
    
    class Config:
        use_enum_values = True

    @property
    def phase(self) -> str:
        if self.action != ChangeAction.DESTROY:
            return "apply"
        return "cleanup" if self.deferred else "destroy"

    @property
    def is_noop(self) -> bool:
        return self.action == ChangeAction.NO_OP


class ChangeSet(BaseModel):
    """Ordered change-set: destroys (dependents first), creates/updates (dependencies first), then deferred destroys."""
    environment: str = Field(..., description="Environment the plan targets")
    prior_serial: int = Field(0, ge=0, description="Serial of the snapshot the plan was computed against")
    lineage: Optional[str] = Field(None, description="Lineage of that snapshot")
    destroy: bool = Field(False, description="Whether this is a full teardown plan")
    changes: List[Change] = Field(default_factory=list, description="Changes in execution order")
    outputs: Dict[str, Dict[str, Any]] = Field(default_factory=dict, exclude=True, description="Module output expressions")
    
    class Config:
        use_enum_values = True

    @property
    def has_changes(self) -> bool:
        return any(not change.is_noop for change in self.changes)

    def count(self, action: ChangeAction) -> int:
        return sum(1 for change in self.changes if change.action == action)

    def summary(self) -> Dict[str, int]:
        return {
            "create": self.count(ChangeAction.CREATE),
            "update": self.count(ChangeAction.UPDATE),
            "destroy": self.count(ChangeAction.DESTROY),
            "no_op": self.count(ChangeAction.NO_OP),
            "replace": sum(
                1 for change in self.changes
                if change.replacement and change.action == ChangeAction.CREATE
            ),
        }

    def phase(self, name: str) -> List[Change]:
        return [change for change in self.changes if change.phase == name]

    def get(self, address: str, action: Optional[ChangeAction] = None) -> Optional[Change]:
        for change in self.changes:
            if change.address == address and (action is None or change.action == action):
                return change
        return None
