"""Unit tests for the service dependency graph."""

import pytest

from zminit.exceptions import (
    CircularDependencyError,
    ConfigInvalidError,
    UnknownDependencyError,
)
from zminit.supervisor import DependencyGraph, ServiceSpec


def _spec(name: str, *deps: str) -> ServiceSpec:
    return ServiceSpec(name=name, command=(name,), depends_on=deps)


class TestDependencyGraph:
    def test_startup_order_puts_dependencies_first(self) -> None:
        graph = DependencyGraph([_spec("c", "b"), _spec("b", "a"), _spec("a")])

        assert graph.startup_order() == ("a", "b", "c")

    def test_independent_services_keep_declaration_order(self) -> None:
        graph = DependencyGraph([_spec("mail"), _spec("php-fpm"), _spec("fcgiwrap")])

        assert graph.startup_order() == ("mail", "php-fpm", "fcgiwrap")

    def test_order_is_deterministic_for_diamonds(self) -> None:
        specs = [
            _spec("nginx", "php-fpm", "fcgiwrap"),
            _spec("fcgiwrap"),
            _spec("php-fpm"),
            _spec("zoneminder", "nginx"),
        ]

        first = DependencyGraph(specs).startup_order()
        second = DependencyGraph(specs).startup_order()

        assert first == second == ("fcgiwrap", "php-fpm", "nginx", "zoneminder")

    def test_shutdown_order_reverses_startup(self) -> None:
        graph = DependencyGraph([_spec("a"), _spec("b", "a"), _spec("c", "b")])

        assert graph.shutdown_order() == ["c", "b", "a"]

    def test_shutdown_order_filters_names(self) -> None:
        graph = DependencyGraph([_spec("a"), _spec("b", "a"), _spec("c", "b")])

        assert graph.shutdown_order(["a", "c"]) == ["c", "a"]

    def test_dependencies_and_dependents(self) -> None:
        graph = DependencyGraph([_spec("a"), _spec("b", "a"), _spec("c", "a")])

        assert graph.dependencies_of("b") == ("a",)
        assert graph.dependents_of("a") == ("b", "c")
        assert "a" in graph
        assert "z" not in graph
        assert len(graph) == 3

    def test_unknown_dependency_raises(self) -> None:
        with pytest.raises(UnknownDependencyError) as exc_info:
            _ = DependencyGraph([_spec("nginx", "php-fpm")])

        assert exc_info.value.service_name == "nginx"
        assert exc_info.value.dependency == "php-fpm"
        assert isinstance(exc_info.value, ConfigInvalidError)

    def test_cycle_raises_with_path(self) -> None:
        with pytest.raises(CircularDependencyError) as exc_info:
            _ = DependencyGraph([_spec("a", "c"), _spec("b", "a"), _spec("c", "b")])

        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_self_dependency_is_a_cycle(self) -> None:
        with pytest.raises(CircularDependencyError):
            _ = DependencyGraph([_spec("a", "a")])

    def test_duplicate_name_raises(self) -> None:
        with pytest.raises(ConfigInvalidError) as exc_info:
            _ = DependencyGraph([_spec("a"), _spec("a")])

        assert exc_info.value.key == "name"
