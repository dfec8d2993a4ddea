import pytest

from infra_reconciler.engine.errors import DependencyCycleError
from infra_reconciler.engine.graph import DependencyGraph


def test_topological_order_deterministic() -> None:
    graph = DependencyGraph(nodes=["a", "b", "c"], dependencies={"b": ["a"], "c": ["a"]})
    assert graph.topological_order() == ["a", "b", "c"]


def test_topological_order_ignores_external_deps() -> None:
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"b": ["external"]})
    assert graph.topological_order() == ["a", "b"]


def test_cycle_detection() -> None:
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"a": ["b"], "b": ["a"]})
    with pytest.raises(DependencyCycleError) as exc_info:
        graph.topological_order()
    assert exc_info.value.addresses[0] == exc_info.value.addresses[-1]


def test_find_cycle_returns_path() -> None:
    graph = DependencyGraph(
        nodes=["a", "b", "c"], dependencies={"a": ["b"], "b": ["c"], "c": ["a"]}
    )
    assert graph.find_cycle() == ["a", "b", "c", "a"]


def test_find_cycle_none_for_dag() -> None:
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"b": ["a"]})
    assert graph.find_cycle() is None


def test_reverse_topological_order() -> None:
    graph = DependencyGraph(nodes=["a", "b", "c"], dependencies={"b": ["a"], "c": ["b"]})
    assert graph.reverse_topological_order() == ["c", "b", "a"]


def test_transitive_dependencies_and_dependents() -> None:
    graph = DependencyGraph(
        nodes=["vpc", "subnet", "instance", "bucket"],
        dependencies={"subnet": ["vpc"], "instance": ["subnet"]},
    )
    assert graph.transitive_dependencies(["instance"]) == {"instance", "subnet", "vpc"}
    assert graph.transitive_dependents("vpc") == {"subnet", "instance"}
    assert graph.transitive_dependents("bucket") == set()
