"""Build directed dependency graph from declared modules."""

import copy
import networkx as nx
from typing import Any, List, Dict, Optional, Set
from ..ingest.models import EnvironmentSpec, ModuleSpec
from ..utils.errors import ConfigurationError, CycleError, UnresolvedReferenceError
from ..utils.logging import get_logger
from .models import Module, Ref, Resource
from .references import MODULE_PREFIX, parse_reference, iter_refs

logger = get_logger("graph.dependency_graph")


class ResourceGraph:
    """Directed dependency graph: nodes=resources, edges=dependent -> dependency."""

    def __init__(self):
        self.graph = nx.DiGraph()
        self.modules: Dict[str, Module] = {}
        self._resource_map: Dict[str, Resource] = {}
        self._order: List[str] = []
        self._specs: Dict[str, ModuleSpec] = {}
        self._resolved: Dict[str, Any] = {}

    def build_from_modules(self, spec: EnvironmentSpec) -> None:
        """
        Build the graph from declared modules.

        Disabled modules are recorded but contribute no resources.

        Raises:
            CycleError: If references or depends_on form a cycle
            UnresolvedReferenceError: If a reference targets a disabled or absent module,
                an unknown output, input or sibling resource
            ConfigurationError: If module inputs do not match declared variables
        """
        self._specs = {m.name: m for m in spec.modules}

        index = 0
        for module_spec in spec.modules:
            module = Module(
                name=module_spec.name,
                source=module_spec.source,
                enabled=module_spec.enabled,
            )
            self.modules[module.name] = module
            if not module_spec.enabled:
                logger.info(f"Module '{module.name}' is disabled; excluding its resources")
                continue

            self._check_inputs(module_spec)
            for resource_spec in module_spec.resources:
                address = f"{module.name}.{resource_spec.name}"
                module.resources.append(address)
                self.graph.add_node(address)
                self._resource_map[address] = Resource(
                    address=address,
                    module=module.name,
                    name=resource_spec.name,
                    type=resource_spec.type,
                    immutable=list(resource_spec.immutable),
                    prevent_destroy=resource_spec.prevent_destroy,
                    index=index,
                )
                index += 1

        for module_spec in spec.modules:
            if module_spec.enabled:
                self._resolve_module(module_spec)

        self._check_acyclic()
        self._order = list(nx.lexicographical_topological_sort(
            self.graph.reverse(copy=False),
            key=lambda node: self._resource_map[node].index,
        ))

        logger.info(
            f"Built dependency graph with {self.graph.number_of_nodes()} nodes "
            f"and {self.graph.number_of_edges()} edges"
        )

    def _check_inputs(self, module_spec: ModuleSpec) -> None:
        if module_spec.variables is None:
            return

        undeclared = sorted(set(module_spec.inputs) - set(module_spec.variables))
        if undeclared:
            raise ConfigurationError(
                f"Module '{module_spec.name}' received undeclared input(s): {', '.join(undeclared)}"
            )

        missing = sorted(
            name for name, variable in module_spec.variables.items()
            if variable.required and name not in module_spec.inputs
        )
        if missing:
            raise ConfigurationError(
                f"Module '{module_spec.name}' is missing required input(s): {', '.join(missing)}"
            )

    def _resolve_module(self, module_spec: ModuleSpec) -> None:
        module = self.modules[module_spec.name]

        for name in module_spec.inputs:
            module.inputs[name] = self._resolve_input(module_spec.name, name, [])

        for resource_spec in module_spec.resources:
            address = f"{module_spec.name}.{resource_spec.name}"
            resource = self._resource_map[address]
            source = f"resource {address}"
            resource.attributes = {
                key: self._resolve(value, module_spec.name, source, [])
                for key, value in resource_spec.attributes.items()
            }

            dependencies: List[str] = []
            for ref in iter_refs(resource.attributes):
                dependencies.append(ref.address)
            for entry in resource_spec.depends_on:
                dependencies.extend(self._resolve_depends_on(entry, module_spec, source))

            resource.depends_on = list(dict.fromkeys(dependencies))
            for dependency in resource.depends_on:
                self.graph.add_edge(address, dependency)
                logger.debug(f"Added dependency edge: {address} -> {dependency}")

        for name in module_spec.outputs:
            module.outputs[name] = self._resolve_output(module_spec.name, name, [])

    def _resolve_depends_on(self, entry: str, module_spec: ModuleSpec, source: str) -> List[str]:
        if entry.startswith(MODULE_PREFIX) and entry.count(".") == 1 and entry != MODULE_PREFIX:
            target = entry[len(MODULE_PREFIX):]
            return list(self._enabled_module(target, entry, source).resources)
        if parse_reference(entry) is not None:
            raise ConfigurationError(
                f"Invalid depends_on entry '{entry}' in {source}: "
                "expected a sibling resource name or 'module.<name>'"
            )

        address = f"{module_spec.name}.{entry}"
        if address not in self._resource_map:
            raise UnresolvedReferenceError(entry, source, "no such resource in module")
        return [address]

    def _enabled_module(self, name: str, reference: str, source: str) -> Module:
        module = self.modules.get(name)
        if module is None:
            raise UnresolvedReferenceError(reference, source, f"module '{name}' is not declared")
        if not module.enabled:
            raise UnresolvedReferenceError(reference, source, f"module '{name}' is disabled")
        return module

    def _resolve_input(self, module_name: str, name: str, stack: List[str]) -> Any:
        key = f"module.{module_name}.var.{name}"
        if key in self._resolved:
            return self._resolved[key]
        stack = self._push(stack, key)

        module_spec = self._specs[module_name]
        if name in module_spec.inputs:
            # Inputs are evaluated in the caller's (root) scope.
            value = self._resolve(module_spec.inputs[name], None, f"input '{name}' of module '{module_name}'", stack)
        else:
            variable = (module_spec.variables or {}).get(name)
            if variable is None or variable.required:
                raise UnresolvedReferenceError(
                    f"var.{name}", f"module '{module_name}'", "input is not declared or not set"
                )
            value = copy.deepcopy(variable.default)

        self._resolved[key] = value
        return value

    def _resolve_output(self, module_name: str, name: str, stack: List[str]) -> Any:
        key = f"module.{module_name}.{name}"
        if key in self._resolved:
            return self._resolved[key]
        stack = self._push(stack, key)

        module_spec = self._specs[module_name]
        value = self._resolve(module_spec.outputs[name], module_name, f"output '{name}' of module '{module_name}'", stack)
        self._resolved[key] = value
        return value

    def _resolve(self, value: Any, module_name: Optional[str], source: str, stack: List[str]) -> Any:
        """Resolve a raw value in the scope of module_name (None is the root scope)."""
        if isinstance(value, dict):
            return {key: self._resolve(item, module_name, source, stack) for key, item in value.items()}
        if isinstance(value, list):
            return [self._resolve(item, module_name, source, stack) for item in value]

        parsed = parse_reference(value)
        if parsed is None:
            return value

        kind = parsed[0]
        if kind == "invalid":
            raise ConfigurationError(f"Malformed reference '{value}' in {source}")

        if kind == "module":
            _, target, output = parsed
            module = self._enabled_module(target, value, source)
            if output not in self._specs[module.name].outputs:
                raise UnresolvedReferenceError(value, source, f"module '{target}' has no output '{output}'")
            return self._resolve_output(target, output, stack)

        if module_name is None:
            raise UnresolvedReferenceError(value, source, "only module outputs can be referenced here")

        if kind == "var":
            return self._resolve_input(module_name, parsed[1], stack)

        _, name, attribute = parsed
        address = f"{module_name}.{name}"
        if address not in self._resource_map:
            raise UnresolvedReferenceError(value, source, f"module '{module_name}' has no resource '{name}'")
        return Ref(address=address, attribute=attribute)

    def _push(self, stack: List[str], key: str) -> List[str]:
        if key in stack:
            raise CycleError(stack[stack.index(key):] + [key])
        return stack + [key]

    def _check_acyclic(self) -> None:
        if nx.is_directed_acyclic_graph(self.graph):
            return
        edges = nx.find_cycle(self.graph)
        nodes = [edge[0] for edge in edges]
        raise CycleError(nodes + [nodes[0]])

    def get_resource(self, address: str) -> Optional[Resource]:
        """Get resource by address."""
        return self._resource_map.get(address)

    def get_all_resources(self) -> List[Resource]:
        """Get all resources in dependency order."""
        return [self._resource_map[address] for address in self._order]

    def get_dependencies(self, address: str) -> List[str]:
        """Direct dependencies of a resource."""
        resource = self._resource_map.get(address)
        return list(resource.depends_on) if resource else []

    def get_upstream_resources(self, address: str) -> Set[str]:
        """Get all resources the given resource depends on, transitively."""
        if address not in self.graph:
            return set()
        return set(nx.descendants(self.graph, address))

    def get_downstream_resources(self, address: str) -> Set[str]:
        """Get all resources that depend on the given resource, transitively."""
        if address not in self.graph:
            return set()
        return set(nx.ancestors(self.graph, address))

    def create_order(self) -> List[str]:
        """Addresses with dependencies first; ties keep declaration order."""
        return list(self._order)

    def destroy_order(self) -> List[str]:
        """Addresses with dependents first."""
        return list(reversed(self._order))

    def enabled_modules(self) -> List[Module]:
        return [module for module in self.modules.values() if module.enabled]


def build_graph(spec: EnvironmentSpec) -> ResourceGraph:
    """Build and validate a ResourceGraph from an EnvironmentSpec."""
    graph = ResourceGraph()
    graph.build_from_modules(spec)
    return graph
