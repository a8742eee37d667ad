"""converge - desired-state reconciliation engine for layered infrastructure modules."""

import getpass
import os
import socket
import threading
from typing import Callable, Optional, Tuple
from .ingest.config_loader import load_environment_file
from .ingest.models import EnvironmentSpec
from .graph.dependency_graph import ResourceGraph, build_graph
from .plan.engine import create_plan, create_destroy_plan
from .plan.models import ChangeSet
from .apply.executor import ApplyExecutor
from .apply.models import ApplyResult
from .apply.retry import RetryPolicy
from .state.store import StateStore, open_state_store
from .provider.base import Provider
from .provider.registry import load_provider
from .config import EngineSettings, load_engine_settings, resolve_environment
from .utils.logging import setup_logging, get_logger
from .utils.errors import ConvergeError

__version__ = "0.1.0"

__all__ = [
    "Workspace",
    "load_environment",
    "plan_environment",
    "apply_environment",
    "destroy_environment",
    "default_holder",
]

setup_logging()
logger = get_logger("converge")


class Workspace:
    """Everything one invocation needs: declared config, settings, store and provider."""

    def __init__(
        self,
        spec: EnvironmentSpec,
        environment: str,
        settings: EngineSettings,
        store: StateStore,
        provider: Optional[Provider] = None
    ):
        self.spec = spec
        self.environment = environment
        self.settings = settings
        self.store = store
        self._provider = provider

    @property
    def provider(self) -> Provider:
        if self._provider is None:
            self._provider = load_provider(self.settings.provider.name, self.settings.provider.options)
        return self._provider

    def build_graph(self) -> ResourceGraph:
        return build_graph(self.spec)

    def executor(self) -> ApplyExecutor:
        return ApplyExecutor(
            self.store,
            self.provider,
            retry_policy=RetryPolicy.from_settings(self.settings.retry),
            parallelism=self.settings.apply.parallelism,
        )


def default_holder() -> str:
    """Lock holder id for this process: user@host:pid."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}:{os.getpid()}"


def load_environment(
    config_path: str,
    environment: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
    settings_path: Optional[str] = None,
    store: Optional[StateStore] = None,
    provider: Optional[Provider] = None
) -> Workspace:
    """Load declared configuration and settings, and open the state store."""
    if settings is None:
        settings = load_engine_settings(settings_path)
    spec = load_environment_file(config_path)
    name = resolve_environment(environment, spec.environment)
    if store is None:
        store = open_state_store(settings)
    return Workspace(spec, name, settings, store, provider)


def plan_environment(workspace: Workspace) -> ChangeSet:
    """
    Build the graph and diff it against current state.

    Read-only; takes no lock.

    Raises:
        ConfigurationError: On cycles, unresolved references or guarded replacements
    """
    graph = workspace.build_graph()
    snapshot = workspace.store.read_or_empty(workspace.environment)
    return create_plan(graph, snapshot, workspace.environment)


def _locked_run(
    workspace: Workspace,
    make_plan: Callable[[], ChangeSet],
    operation: str,
    holder: Optional[str],
    lock_timeout: Optional[float],
    confirm: Optional[Callable[[ChangeSet], bool]],
    cancel_event: Optional[threading.Event]
) -> Tuple[ChangeSet, Optional[ApplyResult]]:
    holder = holder or default_holder()
    with workspace.store.locked(
        workspace.environment, holder, lock_timeout, operation=operation, cancel_event=cancel_event
    ) as lock:
        change_set = make_plan()
        if not change_set.has_changes:
            logger.info(f"No changes for '{workspace.environment}'")
        if confirm is not None and not confirm(change_set):
            logger.info("Apply declined")
            return change_set, None
        result = workspace.executor().apply(change_set, lock, cancel_event=cancel_event)
    return change_set, result


def apply_environment(
    workspace: Workspace,
    holder: Optional[str] = None,
    lock_timeout: Optional[float] = None,
    confirm: Optional[Callable[[ChangeSet], bool]] = None,
    cancel_event: Optional[threading.Event] = None
) -> Tuple[ChangeSet, Optional[ApplyResult]]:
    """
    Plan and apply under the environment lock.

    Configuration errors surface before the lock is taken. confirm, if given,
    sees the ChangeSet while the lock is held; returning False skips the apply.

    Returns:
        (ChangeSet, ApplyResult or None if declined)
    """
    graph = workspace.build_graph()

    def make_plan() -> ChangeSet:
        snapshot = workspace.store.read_or_empty(workspace.environment)
        return create_plan(graph, snapshot, workspace.environment)

    return _locked_run(workspace, make_plan, "apply", holder, lock_timeout, confirm, cancel_event)


def destroy_environment(
    workspace: Workspace,
    holder: Optional[str] = None,
    lock_timeout: Optional[float] = None,
    confirm: Optional[Callable[[ChangeSet], bool]] = None,
    cancel_event: Optional[threading.Event] = None
) -> Tuple[ChangeSet, Optional[ApplyResult]]:
    """Tear down every resource in state, dependents first."""
    try:
        graph = workspace.build_graph()
    except ConvergeError as e:
        # Teardown must work even when the declared configuration no longer builds.
        logger.warning(f"Destroying without prevent_destroy guards: {e}")
        graph = None

    def make_plan() -> ChangeSet:
        snapshot = workspace.store.read_or_empty(workspace.environment)
        return create_destroy_plan(snapshot, workspace.environment, graph)

    return _locked_run(workspace, make_plan, "destroy", holder, lock_timeout, confirm, cancel_event)
