"""Plan engine and change-set models."""

from .models import Change, ChangeAction, ChangeSet
from .engine import create_plan, create_destroy_plan

__all__ = ["Change", "ChangeAction", "ChangeSet", "create_plan", "create_destroy_plan"]
