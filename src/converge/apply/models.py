"""Pydantic models for apply results."""

from enum import Enum
from typing import List, Dict, Any
from pydantic import BaseModel, Field


class ApplyStatus(str, Enum):
    """Overall outcome of an apply run."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OperationRecord(BaseModel):
    """A change that was applied or skipped."""
    address: str = Field(..., description="Resource address")
    action: str = Field(..., description="CREATE, UPDATE or DESTROY")


class OperationFailure(BaseModel):
    """A change whose provider operation failed."""
    address: str = Field(..., description="Resource address")
    action: str = Field(..., description="CREATE, UPDATE or DESTROY")
    error: str = Field(..., description="Underlying cause")


class ApplyResult(BaseModel):
    """Outcome of executing one ChangeSet."""
    environment: str = Field(..., description="Environment applied to")
    status: ApplyStatus = Field(..., description="Overall outcome")
    succeeded: List[OperationRecord] = Field(default_factory=list, description="Operations that completed")
    failed: List[OperationFailure] = Field(default_factory=list, description="Operations that failed")
    skipped: List[OperationRecord] = Field(default_factory=list, description="Operations never started")
    unchanged: int = Field(default=0, ge=0, description="No-op changes")
    serial: int = Field(default=0, ge=0, description="Serial of the snapshot after the run")
    outputs: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Resolved module outputs")
    
    class Config:
        use_enum_values = True

    @property
    def ok(self) -> bool:
        return self.status == ApplyStatus.SUCCESS

    def summary_line(self) -> str:
        return (
            f"{len(self.succeeded)} succeeded, {len(self.failed)} failed, "
            f"{len(self.skipped)} skipped"
        )
