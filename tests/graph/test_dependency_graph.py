"""Tests for dependency graph."""

import pytest
from converge.graph.dependency_graph import build_graph
from converge.graph.models import Ref
from converge.ingest.config_loader import parse_environment
from converge.utils.errors import ConfigurationError, CycleError, UnresolvedReferenceError


def _spec(modules, tmp_path):
    return parse_environment({"environment": "test", "modules": modules}, tmp_path)


class TestSandboxGraph:
    """Test graph construction from the sandbox fixture."""

    def test_disabled_module_contributes_nothing(self, sandbox_spec):
        """Database is declared but disabled."""
        graph = build_graph(sandbox_spec)
        assert graph.modules["database"].enabled is False
        assert not any(r.module == "database" for r in graph.get_all_resources())
        assert graph.graph.number_of_nodes() == 7

    def test_create_order_respects_dependencies(self, sandbox_spec):
        """Every resource comes after everything it depends on."""
        graph = build_graph(sandbox_spec)
        order = graph.create_order()
        position = {address: idx for idx, address in enumerate(order)}

        for address in order:
            for dependency in graph.get_upstream_resources(address):
                assert position[dependency] < position[address]

        assert order == [
            "network.vpc",
            "network.public_a",
            "network.public_b",
            "network.private_a",
            "network.private_b",
            "cluster.control_plane",
            "cluster.node_group",
        ]

    def test_cluster_depends_on_private_subnets(self, sandbox_spec):
        """Module output references become resource-level edges."""
        graph = build_graph(sandbox_spec)
        dependencies = set(graph.get_dependencies("cluster.control_plane"))
        assert dependencies == {"network.vpc", "network.private_a", "network.private_b"}
        assert "network.public_a" not in graph.get_upstream_resources("cluster.node_group")

    def test_references_resolve_to_refs(self, sandbox_spec):
        """Cross-module inputs resolve to Ref leaves on resource attributes."""
        graph = build_graph(sandbox_spec)
        control_plane = graph.get_resource("cluster.control_plane")
        assert control_plane.attributes["vpc_id"] == Ref(address="network.vpc", attribute="id")
        assert control_plane.attributes["subnet_ids"] == [
            Ref(address="network.private_a", attribute="id"),
            Ref(address="network.private_b", attribute="id"),
        ]
        assert control_plane.attributes["endpoint_public_access"] is False

    def test_variable_defaults_apply(self, sandbox_spec):
        """Inputs that are not passed take their declared default."""
        graph = build_graph(sandbox_spec)
        assert graph.get_resource("network.vpc").attributes["tags"] == {"Environment": "sandbox"}
        assert graph.get_resource("cluster.node_group").attributes["desired_size"] == 2

    def test_destroy_order_is_reverse(self, sandbox_spec):
        graph = build_graph(sandbox_spec)
        assert graph.destroy_order() == list(reversed(graph.create_order()))

    def test_downstream_resources(self, sandbox_spec):
        graph = build_graph(sandbox_spec)
        downstream = graph.get_downstream_resources("network.private_a")
        assert downstream == {"cluster.control_plane", "cluster.node_group"}


class TestReferenceErrors:
    """Test reference validation."""

    def test_reference_to_disabled_module(self, sandbox_spec):
        """Referencing a disabled module fails before anything is planned."""
        cluster = sandbox_spec.get_module("cluster")
        cluster.inputs["subnet_ids"] = "module.database.endpoint"
        cluster.variables = None

        with pytest.raises(UnresolvedReferenceError, match="disabled"):
            build_graph(sandbox_spec)

    def test_reference_to_unknown_output(self, tmp_path):
        spec = _spec([
            {"name": "a", "outputs": {"x": 1}},
            {"name": "b", "inputs": {"y": "module.a.missing"}},
        ], tmp_path)
        with pytest.raises(UnresolvedReferenceError, match="has no output 'missing'"):
            build_graph(spec)

    def test_reference_to_undeclared_module(self, tmp_path):
        spec = _spec([{"name": "b", "inputs": {"y": "module.ghost.x"}}], tmp_path)
        with pytest.raises(UnresolvedReferenceError, match="not declared"):
            build_graph(spec)

    def test_unknown_sibling_resource(self, tmp_path):
        spec = _spec([{
            "name": "a",
            "resources": [{"name": "r", "type": "t", "attributes": {"x": "resource.nope.id"}}],
        }], tmp_path)
        with pytest.raises(UnresolvedReferenceError, match="no resource 'nope'"):
            build_graph(spec)

    def test_missing_required_input(self, tmp_path):
        spec = _spec([{"name": "a", "variables": {"needed": {"description": "x"}}}], tmp_path)
        with pytest.raises(ConfigurationError, match="missing required input"):
            build_graph(spec)

    def test_undeclared_input(self, tmp_path):
        spec = _spec([{"name": "a", "variables": {}, "inputs": {"extra": 1}}], tmp_path)
        with pytest.raises(ConfigurationError, match="undeclared input"):
            build_graph(spec)

    def test_malformed_reference(self, tmp_path):
        spec = _spec([{
            "name": "a",
            "resources": [{"name": "r", "type": "t", "attributes": {"x": "module.only_two"}}],
        }], tmp_path)
        with pytest.raises(ConfigurationError, match="Malformed reference"):
            build_graph(spec)


class TestCycles:
    """Test cycle detection."""

    def test_resource_cycle(self, tmp_path):
        """Resources referencing each other form a cycle."""
        spec = _spec([{
            "name": "a",
            "resources": [
                {"name": "x", "type": "t", "attributes": {"peer": "resource.y.id"}},
                {"name": "y", "type": "t", "attributes": {"peer": "resource.x.id"}},
            ],
        }], tmp_path)
        with pytest.raises(CycleError) as exc_info:
            build_graph(spec)
        assert set(exc_info.value.nodes) == {"a.x", "a.y"}

    def test_module_output_cycle(self, tmp_path):
        """Modules feeding each other's inputs form a cycle."""
        spec = _spec([
            {"name": "a", "inputs": {"v": "module.b.out"}, "outputs": {"out": "var.v"}},
            {"name": "b", "inputs": {"v": "module.a.out"}, "outputs": {"out": "var.v"}},
        ], tmp_path)
        with pytest.raises(CycleError, match="Dependency cycle detected"):
            build_graph(spec)

    def test_depends_on_cycle(self, tmp_path):
        spec = _spec([{
            "name": "a",
            "resources": [
                {"name": "x", "type": "t", "depends_on": ["y"]},
                {"name": "y", "type": "t", "depends_on": ["x"]},
            ],
        }], tmp_path)
        with pytest.raises(CycleError):
            build_graph(spec)


class TestDependsOn:
    """Test explicit depends_on entries."""

    def test_module_dependency(self, tmp_path):
        """'module.<name>' depends on every resource of that module."""
        spec = _spec([
            {"name": "base", "resources": [{"name": "r1", "type": "t"}, {"name": "r2", "type": "t"}]},
            {"name": "app", "resources": [{"name": "svc", "type": "t", "depends_on": ["module.base"]}]},
        ], tmp_path)
        graph = build_graph(spec)
        assert set(graph.get_dependencies("app.svc")) == {"base.r1", "base.r2"}

    def test_depends_on_disabled_module(self, tmp_path):
        spec = _spec([
            {"name": "base", "enabled": False},
            {"name": "app", "resources": [{"name": "svc", "type": "t", "depends_on": ["module.base"]}]},
        ], tmp_path)
        with pytest.raises(UnresolvedReferenceError, match="disabled"):
            build_graph(spec)

    def test_depends_on_rejects_attribute_references(self, tmp_path):
        spec = _spec([{
            "name": "a",
            "resources": [
                {"name": "x", "type": "t"},
                {"name": "y", "type": "t", "depends_on": ["resource.x.id"]},
            ],
        }], tmp_path)
        with pytest.raises(ConfigurationError, match="Invalid depends_on"):
            build_graph(spec)
