"""Start-order dependency graph over service names."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

from zminit.exceptions import (
    CircularDependencyError,
    ConfigInvalidError,
    UnknownDependencyError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from ._models import ServiceSpec


@final
class DependencyGraph:
    """Immutable directed acyclic graph of "must be running before" edges.

    Built once from the service specs. Construction fails if a name is
    duplicated, a dependency is undefined, or the dependencies form a cycle.
    """

    __slots__ = ("_dependencies", "_dependents", "_order")

    def __init__(self, specs: Sequence[ServiceSpec]) -> None:
        """Build and validate the graph.

        Args:
            specs: Service definitions in declaration order.

        Raises:
            ConfigInvalidError: If a service name is declared twice.
            UnknownDependencyError: If a dependency name is not defined.
            CircularDependencyError: If the dependencies contain a cycle.
        """
        dependencies: dict[str, tuple[str, ...]] = {}
        for spec in specs:
            if spec.name in dependencies:
                msg = f"Service '{spec.name}' is defined more than once"
                raise ConfigInvalidError(msg, key="name", value=spec.name)
            dependencies[spec.name] = tuple(spec.depends_on)

        dependents: dict[str, list[str]] = {name: [] for name in dependencies}
        for name, deps in dependencies.items():
            for dep in deps:
                if dep not in dependencies:
                    msg = f"Service '{name}' depends on undefined service '{dep}'"
                    raise UnknownDependencyError(msg, service_name=name, dependency=dep)
                dependents[dep].append(name)

        self._dependencies = dependencies
        self._dependents = {name: tuple(names) for name, names in dependents.items()}
        self._order = self._topological_order()

    def _find_cycle(self) -> list[str] | None:
        """Return one dependency cycle using DFS, or None if there is none."""
        visited: set[str] = set()
        rec_stack: set[str] = set()
        path: list[str] = []

        def dfs(node: str) -> list[str] | None:
            visited.add(node)
            rec_stack.add(node)
            path.append(node)

            for neighbor in self._dependencies[node]:
                if neighbor not in visited:
                    result = dfs(neighbor)
                    if result is not None:
                        return result
                elif neighbor in rec_stack:
                    cycle_start = path.index(neighbor)
                    return [*path[cycle_start:], neighbor]

            _ = path.pop()
            rec_stack.remove(node)
            return None

        for name in self._dependencies:
            if name not in visited:
                cycle = dfs(name)
                if cycle is not None:
                    return cycle
        return None

    def _topological_order(self) -> tuple[str, ...]:
        """Kahn's algorithm, breaking ties by declaration order."""
        remaining = {name: len(deps) for name, deps in self._dependencies.items()}
        declared = list(self._dependencies)
        order: list[str] = []
        ready = [name for name in declared if remaining[name] == 0]

        while ready:
            name = ready.pop(0)
            order.append(name)
            for dependent in self._dependents[name]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
            ready.sort(key=declared.index)

        if len(order) != len(declared):
            cycle = self._find_cycle() or [n for n in declared if n not in order]
            msg = f"Circular dependency detected: {' -> '.join(cycle)}"
            raise CircularDependencyError(msg, cycle=cycle)

        return tuple(order)

    def __contains__(self, name: object) -> bool:
        return name in self._dependencies

    def __len__(self) -> int:
        return len(self._dependencies)

    @property
    def names(self) -> tuple[str, ...]:
        """Return all service names in declaration order."""
        return tuple(self._dependencies)

    def dependencies_of(self, name: str) -> tuple[str, ...]:
        """Return the direct dependencies of a service."""
        return self._dependencies[name]

    def dependents_of(self, name: str) -> tuple[str, ...]:
        """Return the services that directly depend on ``name``."""
        return self._dependents[name]

    def startup_order(self) -> tuple[str, ...]:
        """Return every service name, each after all of its dependencies."""
        return self._order

    def shutdown_order(self, names: Iterable[str] | None = None) -> list[str]:
        """Return services in reverse dependency order.

        Args:
            names: Restrict the result to these services. All if None.

        Returns:
            Names ordered so every service precedes its dependencies.
        """
        selected = set(self._order if names is None else names)
        return [name for name in reversed(self._order) if name in selected]
