"""State snapshots, locks and stores."""

from .models import Lock, ResourceState, StateSnapshot
from .store import LocalStateStore, MemoryStateStore, StateStore, open_state_store

__all__ = [
    "Lock",
    "ResourceState",
    "StateSnapshot",
    "StateStore",
    "LocalStateStore",
    "MemoryStateStore",
    "open_state_store",
]
