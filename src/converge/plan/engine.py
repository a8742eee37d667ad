"""Plan engine: diff desired resources against the current snapshot."""

from typing import Any, Dict, List, Optional
import networkx as nx
from ..graph.dependency_graph import ResourceGraph
from ..graph.models import Ref, Resource
from ..graph.references import UNKNOWN, contains_unknown, evaluate
from ..state.models import ResourceState, StateSnapshot
from ..utils.errors import ImmutableFieldError, StateCorruptionError
from ..utils.logging import get_logger
from .models import Change, ChangeAction, ChangeSet

logger = get_logger("plan.engine")


def _snapshot_graph(snapshot: StateSnapshot) -> nx.DiGraph:
    """Dependency graph of what is recorded in state (dependent -> dependency)."""
    graph = nx.DiGraph()
    for address in snapshot.resources:
        graph.add_node(address)
    for address, record in snapshot.resources.items():
        for dependency in record.dependencies:
            if dependency in snapshot.resources:
                graph.add_edge(address, dependency)
    return graph


def _destroy_changes(
    snapshot: StateSnapshot,
    targets: Dict[str, bool],
    graph: Optional[ResourceGraph]
) -> List[Change]:
    """
    Destroy changes for targets (address -> is_replacement), dependents first.

    Ordering and waits_for come from dependencies recorded in state, so
    resources no longer declared are still torn down safely. A removed
    resource that a kept resource still depends on in state is deferred
    until after creates and updates, so the kept resource is released first.
    Replacement destroys are never deferred.
    """
    if not targets:
        return []

    state_graph = _snapshot_graph(snapshot)
    position = {address: idx for idx, address in enumerate(snapshot.resources)}
    try:
        order = list(nx.lexicographical_topological_sort(state_graph, key=lambda node: position[node]))
    except nx.NetworkXUnfeasible:
        raise StateCorruptionError("Dependencies recorded in state contain a cycle")

    deferred = {
        address for address, is_replacement in targets.items()
        if not is_replacement
        and any(dependent not in targets for dependent in nx.ancestors(state_graph, address))
    }

    changes = []
    for address in order:
        if address not in targets:
            continue
        record = snapshot.resources[address]
        resource = graph.get_resource(address) if graph is not None else None
        if resource is not None and resource.prevent_destroy and not targets[address]:
            raise ImmutableFieldError(address)
        waits_for = [
            dependent for dependent in order
            if dependent in targets
            and (dependent in deferred) == (address in deferred)
            and dependent in nx.ancestors(state_graph, address)
        ]
        changes.append(Change(
            address=address,
            type=record.type,
            module=record.module,
            action=ChangeAction.DESTROY,
            identity=record.identity,
            before=dict(record.attributes),
            after=None,
            requires_replace=[],
            replacement=targets[address],
            dependencies=list(record.dependencies),
            waits_for=waits_for,
            deferred=address in deferred,
        ))
    return changes


class _Planner:
    """Walks desired resources in dependency order, deciding one action per resource."""

    def __init__(self, graph: ResourceGraph, snapshot: StateSnapshot):
        self.graph = graph
        self.snapshot = snapshot
        self.decisions: Dict[str, ChangeAction] = {}
        self.desired: Dict[str, Dict[str, Any]] = {}

    def lookup(self, ref: Ref) -> Any:
        action = self.decisions.get(ref.address)
        if action is None or action == ChangeAction.CREATE:
            return UNKNOWN

        if action == ChangeAction.UPDATE and ref.attribute in self.desired[ref.address]:
            return self.desired[ref.address][ref.attribute]

        record = self.snapshot.get(ref.address)
        try:
            return record.get_attribute(ref.attribute)
        except KeyError:
            return UNKNOWN

    def diff(self, resource: Resource, record: ResourceState) -> List[str]:
        desired = self.desired[resource.address]
        changed = []
        for key, value in desired.items():
            if contains_unknown(value) or key not in record.attributes or record.attributes[key] != value:
                changed.append(key)
        return changed

    def plan_resource(self, resource: Resource) -> Change:
        record = self.snapshot.get(resource.address)
        desired = evaluate(resource.attributes, self.lookup)
        self.desired[resource.address] = desired

        changed: List[str] = []
        forced: List[str] = []
        replacement = False

        if record is None:
            action = ChangeAction.CREATE
            changed = sorted(desired)
        elif record.type != resource.type:
            action = ChangeAction.CREATE
            changed = sorted(desired)
            forced = ["type"]
            replacement = True
        else:
            changed = self.diff(resource, record)
            forced = [key for key in changed if key in resource.immutable]
            if forced:
                action = ChangeAction.CREATE
                replacement = True
            elif changed:
                action = ChangeAction.UPDATE
            else:
                action = ChangeAction.NO_OP

        if replacement and resource.prevent_destroy:
            raise ImmutableFieldError(resource.address, forced)

        self.decisions[resource.address] = action
        return Change(
            address=resource.address,
            type=resource.type,
            module=resource.module,
            action=action,
            identity=record.identity if record is not None else None,
            before=dict(record.attributes) if record is not None else None,
            after=desired,
            changed_attributes=changed,
            requires_replace=forced,
            replacement=replacement,
            dependencies=list(resource.depends_on),
            waits_for=[],
            template=resource.attributes,
        )


def create_plan(graph: ResourceGraph, snapshot: StateSnapshot, environment: str) -> ChangeSet:
    """
    Diff desired resources against the snapshot.

    Read-only: the snapshot is not modified and no lock is taken. The same
    inputs always produce an equal ChangeSet.

    Args:
        graph: Built resource graph (desired state)
        snapshot: Current snapshot (serial 0 and empty if none exists)
        environment: Environment name

    Returns:
        ChangeSet with destroys first (dependents first), then creates,
        updates and no-ops in dependency order, then destroys of removed
        resources that kept resources referenced until their update

    Raises:
        ImmutableFieldError: If a prevent_destroy resource would be replaced
    """
    planner = _Planner(graph, snapshot)
    apply_changes = [planner.plan_resource(resource) for resource in graph.get_all_resources()]

    targets: Dict[str, bool] = {}
    for change in apply_changes:
        if change.replacement:
            targets[change.address] = True
    for address in snapshot.resources:
        if graph.get_resource(address) is None:
            targets[address] = False

    destroy_changes = _destroy_changes(snapshot, targets, graph)

    apply_addresses = [change.address for change in apply_changes]
    for change in apply_changes:
        upstream = graph.get_upstream_resources(change.address)
        change.waits_for = [address for address in apply_addresses if address in upstream]

    change_set = ChangeSet(
        environment=environment,
        prior_serial=snapshot.serial,
        lineage=snapshot.lineage if snapshot.serial else None,
        destroy=False,
        changes=(
            [change for change in destroy_changes if not change.deferred]
            + apply_changes
            + [change for change in destroy_changes if change.deferred]
        ),
        outputs={module.name: dict(module.outputs) for module in graph.enabled_modules()},
    )
    summary = change_set.summary()
    logger.info(
        f"Plan for '{environment}': {summary['create']} to create, {summary['update']} to update, "
        f"{summary['destroy']} to destroy ({summary['replace']} replacements)"
    )
    return change_set


def create_destroy_plan(
    snapshot: StateSnapshot,
    environment: str,
    graph: Optional[ResourceGraph] = None
) -> ChangeSet:
    """
    Plan teardown of every resource recorded in the snapshot.

    Args:
        snapshot: Current snapshot
        environment: Environment name
        graph: Desired graph, consulted only for prevent_destroy guards

    Raises:
        ImmutableFieldError: If a declared resource has prevent_destroy set
    """
    targets = {address: False for address in snapshot.resources}
    change_set = ChangeSet(
        environment=environment,
        prior_serial=snapshot.serial,
        lineage=snapshot.lineage if snapshot.serial else None,
        destroy=True,
        changes=_destroy_changes(snapshot, targets, graph),
    )
    logger.info(f"Destroy plan for '{environment}': {len(change_set.changes)} to destroy")
    return change_set
