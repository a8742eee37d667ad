"""Tests for the plan engine."""

import pytest
from converge.apply.executor import ApplyExecutor
from converge.graph.dependency_graph import build_graph
from converge.graph.references import UNKNOWN
from converge.ingest.config_loader import parse_environment
from converge.plan.engine import create_destroy_plan, create_plan
from converge.plan.models import ChangeAction
from converge.state.models import StateSnapshot
from converge.utils.errors import ImmutableFieldError

ENV = "sandbox"


def _plan(spec, store):
    return create_plan(build_graph(spec), store.read_or_empty(ENV), ENV)


def _apply(spec, store, provider):
    change_set = _plan(spec, store)
    with store.locked(ENV, "tester") as lock:
        return ApplyExecutor(store, provider).apply(change_set, lock)


def _actions(change_set):
    return [(change.address, change.action) for change in change_set.changes]


class TestInitialPlan:
    """Plans against empty state."""

    def test_everything_is_created_in_dependency_order(self, sandbox_spec, store):
        change_set = _plan(sandbox_spec, store)

        assert change_set.prior_serial == 0
        assert all(change.action == ChangeAction.CREATE for change in change_set.changes)
        assert [c.address for c in change_set.changes] == build_graph(sandbox_spec).create_order()
        assert change_set.summary()["create"] == 7

    def test_dependent_values_are_unknown(self, sandbox_spec, store):
        """Values produced by not-yet-created resources are known after apply."""
        change_set = _plan(sandbox_spec, store)
        control_plane = change_set.get("cluster.control_plane")
        assert control_plane.after["vpc_id"] == UNKNOWN
        assert control_plane.after["subnet_ids"] == [UNKNOWN, UNKNOWN]
        assert control_plane.after["version"] == "1.29"

    def test_waits_for_lists_upstream_changes(self, sandbox_spec, store):
        change_set = _plan(sandbox_spec, store)
        assert change_set.get("network.vpc").waits_for == []
        assert change_set.get("cluster.node_group").waits_for == [
            "network.vpc", "network.private_a", "network.private_b", "cluster.control_plane",
        ]

    def test_plan_is_idempotent(self, sandbox_spec, store):
        """Same configuration and state give equal ChangeSets."""
        first = _plan(sandbox_spec, store)
        second = _plan(sandbox_spec, store)
        assert first.model_dump() == second.model_dump()

    def test_plan_does_not_touch_state(self, sandbox_spec, store):
        _plan(sandbox_spec, store)
        assert store.list_environments() == []


class TestPlanAfterApply:
    """Plans against applied state."""

    def test_replan_is_all_noop(self, sandbox_spec, store, provider):
        """Re-planning immediately after a successful apply changes nothing."""
        _apply(sandbox_spec, store, provider)
        change_set = _plan(sandbox_spec, store)

        assert not change_set.has_changes
        assert change_set.summary()["no_op"] == 7
        assert change_set.prior_serial == 1

    def test_replan_after_apply_is_idempotent(self, sandbox_spec, store, provider):
        _apply(sandbox_spec, store, provider)
        assert _plan(sandbox_spec, store).model_dump() == _plan(sandbox_spec, store).model_dump()

    def test_in_place_update(self, sandbox_spec, store, provider):
        _apply(sandbox_spec, store, provider)
        sandbox_spec.get_module("cluster").inputs["node_count"] = 3

        change_set = _plan(sandbox_spec, store)
        node_group = change_set.get("cluster.node_group")
        assert node_group.action == ChangeAction.UPDATE
        assert node_group.changed_attributes == ["desired_size"]
        assert node_group.before["desired_size"] == 2
        assert node_group.after["desired_size"] == 3
        assert change_set.summary()["update"] == 1

    def test_immutable_change_forces_replacement(self, sandbox_spec, store, provider):
        """Replacement destroys first, dependents first, then recreates."""
        _apply(sandbox_spec, store, provider)
        sandbox_spec.get_module("network").inputs["cidr_block"] = "10.1.0.0/16"

        change_set = _plan(sandbox_spec, store)
        destroys = change_set.phase("destroy")
        assert [c.address for c in destroys] == ["cluster.control_plane", "network.vpc"]
        assert all(c.replacement for c in destroys)

        vpc = change_set.get("network.vpc", ChangeAction.CREATE)
        assert vpc.replacement
        assert vpc.requires_replace == ["cidr_block"]

        control_plane = change_set.get("cluster.control_plane", ChangeAction.CREATE)
        assert control_plane.requires_replace == ["vpc_id"]
        assert change_set.get("network.public_a").action == ChangeAction.UPDATE
        assert change_set.get("network.public_a").after["vpc_id"] == UNKNOWN
        assert change_set.summary()["replace"] == 2

    def test_removed_module_is_destroyed_dependents_first(self, sandbox_spec, store, provider):
        _apply(sandbox_spec, store, provider)
        sandbox_spec.get_module("cluster").enabled = False

        change_set = _plan(sandbox_spec, store)
        assert _actions(change_set)[:2] == [
            ("cluster.node_group", ChangeAction.DESTROY),
            ("cluster.control_plane", ChangeAction.DESTROY),
        ]
        assert change_set.get("cluster.control_plane").waits_for == ["cluster.node_group"]
        assert change_set.summary()["no_op"] == 5

    def test_type_change_forces_replacement(self, tmp_path, store, provider):
        modules = [{"name": "app", "resources": [{"name": "db", "type": "sqlite"}]}]
        _apply(parse_environment({"modules": modules}, tmp_path), store, provider)

        modules[0]["resources"][0]["type"] = "postgres"
        change_set = _plan(parse_environment({"modules": modules}, tmp_path), store)
        assert _actions(change_set) == [("app.db", ChangeAction.DESTROY), ("app.db", ChangeAction.CREATE)]
        assert change_set.changes[1].requires_replace == ["type"]


class TestPreventDestroy:
    """Guards on protected resources."""

    @pytest.fixture
    def protected(self, tmp_path):
        def spec(enabled=True, engine="postgres"):
            return parse_environment({"modules": [{
                "name": "db",
                "enabled": enabled,
                "resources": [{
                    "name": "main",
                    "type": "rds",
                    "immutable": ["engine"],
                    "prevent_destroy": True,
                    "attributes": {"engine": engine},
                }],
            }]}, tmp_path)
        return spec

    def test_replacement_is_refused(self, protected, store, provider):
        _apply(protected(), store, provider)
        with pytest.raises(ImmutableFieldError, match="db.main"):
            _plan(protected(engine="mysql"), store)

    def test_destroy_plan_is_refused(self, protected, store, provider):
        _apply(protected(), store, provider)
        graph = build_graph(protected())
        with pytest.raises(ImmutableFieldError):
            create_destroy_plan(store.read(ENV), ENV, graph)

    def test_undeclared_resource_can_be_destroyed(self, protected, store, provider):
        """Once a resource leaves the configuration its guard goes with it."""
        _apply(protected(), store, provider)
        change_set = _plan(protected(enabled=False), store)
        assert _actions(change_set) == [("db.main", ChangeAction.DESTROY)]


class TestDestroyPlan:
    """Full teardown plans."""

    def test_reverse_dependency_order(self, sandbox_spec, store, provider):
        _apply(sandbox_spec, store, provider)
        change_set = create_destroy_plan(store.read(ENV), ENV, build_graph(sandbox_spec))

        order = [c.address for c in change_set.changes]
        assert change_set.destroy
        assert all(c.action == ChangeAction.DESTROY for c in change_set.changes)
        assert order.index("cluster.node_group") < order.index("cluster.control_plane")
        assert order.index("cluster.control_plane") < order.index("network.private_a")
        assert order[-1] == "network.vpc"

    def test_empty_state(self):
        change_set = create_destroy_plan(StateSnapshot(), ENV)
        assert change_set.changes == []
        assert not change_set.has_changes


class TestDeferredDestroy:
    """Removed resources that kept resources still reference."""

    @staticmethod
    def _spec(tmp_path, keep_queue, source):
        resources = [{"name": "consumer", "type": "consumer", "attributes": {"source": source}}]
        if keep_queue:
            resources.insert(0, {"name": "queue", "type": "queue"})
        return parse_environment({"modules": [{"name": "app", "resources": resources}]}, tmp_path)

    def test_destroy_follows_update_of_kept_dependent(self, tmp_path, store, provider):
        _apply(self._spec(tmp_path, True, "resource.queue.id"), store, provider)

        change_set = _plan(self._spec(tmp_path, False, "static-queue"), store)
        assert _actions(change_set) == [
            ("app.consumer", ChangeAction.UPDATE),
            ("app.queue", ChangeAction.DESTROY),
        ]
        queue = change_set.get("app.queue")
        assert queue.deferred
        assert queue.phase == "cleanup"
        assert change_set.phase("destroy") == []

    def test_orphans_without_kept_dependents_go_first(self, tmp_path, store, provider):
        _apply(self._spec(tmp_path, True, "literal"), store, provider)

        change_set = _plan(self._spec(tmp_path, False, "literal"), store)
        assert _actions(change_set) == [
            ("app.queue", ChangeAction.DESTROY),
            ("app.consumer", ChangeAction.NO_OP),
        ]
        assert not change_set.get("app.queue").deferred

    def test_destroy_plan_never_defers(self, sandbox_spec, store, provider):
        _apply(sandbox_spec, store, provider)
        change_set = create_destroy_plan(store.read(ENV), ENV, build_graph(sandbox_spec))
        assert not any(change.deferred for change in change_set.changes)
