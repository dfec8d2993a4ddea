"""Resource graph builder.

Expands declarations into instances (``count``/``condition``), binds
variables and ``count.index``, and derives dependency edges from the
references found in attribute expressions plus explicit ``depends_on``.
Building is pure: the same declarations and variables always produce the
same graph.
"""

from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from infra_reconciler.engine.errors import (
    AttributeTypeError,
    CycleError,
    DuplicateAddressError,
    UnresolvedReferenceError,
    ValidationError,
)
from infra_reconciler.engine.graph import DependencyGraph
from infra_reconciler.resources.base import ResourceDeclaration, ResourceInstance
from infra_reconciler.resources.expressions import (
    ExpressionError,
    ExpressionTypeError,
    RefExpr,
    UnresolvedVariableError,
    bind,
    collect_references,
    evaluate,
    is_static,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

logger = logging.getLogger(__name__)

_DEPENDS_ON_PATTERN = re.compile(
    r"^(?P<decl>[A-Za-z_][\w-]*\.[A-Za-z_][\w-]*)(?:\[(?P<index>\d+)\])?$"
)


class ResourceGraph:
    """Immutable DAG of resource instances."""

    def __init__(
        self,
        instances: Mapping[str, ResourceInstance],
        declarations: Mapping[str, list[str]],
    ) -> None:
        self._instances = MappingProxyType(dict(instances))
        self._declarations = MappingProxyType({k: list(v) for k, v in declarations.items()})
        self._graph = DependencyGraph(
            self._instances, {a: i.dependencies for a, i in self._instances.items()}
        )

    @property
    def instances(self) -> Mapping[str, ResourceInstance]:
        return self._instances

    @property
    def pruned(self) -> set[str]:
        """Declarations that expanded to zero instances."""
        return {d for d, addrs in self._declarations.items() if not addrs}

    @property
    def edges(self) -> list[tuple[str, str]]:
        """``(dependency, dependent)`` pairs, sorted."""
        return sorted(
            (dep, addr) for addr, inst in self._instances.items() for dep in inst.dependencies
        )

    def addresses(self) -> list[str]:
        return sorted(self._instances)

    def get(self, address: str) -> ResourceInstance | None:
        return self._instances.get(address)

    def instances_of(self, declaration: str) -> list[str]:
        return list(self._declarations.get(declaration, []))

    def dependencies(self, address: str) -> set[str]:
        return self._graph.dependencies(address)

    def dependents(self, address: str) -> set[str]:
        return self._graph.dependents(address)

    def transitive_dependencies(self, addresses: Iterable[str]) -> set[str]:
        return self._graph.transitive_dependencies(addresses)

    def topological_order(self) -> list[str]:
        return self._graph.topological_order()

    def find_cycle(self) -> list[str] | None:
        return self._graph.find_cycle()

    def __contains__(self, address: object) -> bool:
        return address in self._instances

    def __len__(self) -> int:
        return len(self._instances)


def _static_value(
    decl: ResourceDeclaration, field: str, value: Any, variables: Mapping[str, Any]
) -> Any:
    if value is None or isinstance(value, bool | int):
        return value
    if not is_static(value):
        raise ValidationError([f"{decl.address}: {field} must not reference other resources"])
    try:
        bound = bind(value, variables=variables)
        return evaluate(bound, lambda r: None)
    except UnresolvedVariableError as e:
        raise UnresolvedReferenceError(decl.address, f"var.{e.name}", "undefined variable") from e
    except ExpressionError as e:
        raise ValidationError([f"{decl.address}: {field}: {e}"]) from e


def _instance_count(decl: ResourceDeclaration, variables: Mapping[str, Any]) -> int:
    """Number of instances; an uncounted declaration yields 0 or 1."""
    condition = _static_value(decl, "condition", decl.condition, variables)
    if condition is not None and not isinstance(condition, bool):
        raise ValidationError(
            [f"{decl.address}: condition must be a boolean, got {type(condition).__name__}"]
        )

    count = _static_value(decl, "count", decl.count, variables)
    if count is None:
        count = 1
    elif isinstance(count, bool) or not isinstance(count, int):
        raise ValidationError(
            [f"{decl.address}: count must be an integer, got {type(count).__name__}"]
        )
    elif count < 0:
        raise ValidationError([f"{decl.address}: count must not be negative, got {count}"])

    if condition is False:
        return 0
    return count


class _Builder:
    def __init__(
        self, declarations: Sequence[ResourceDeclaration], variables: Mapping[str, Any]
    ) -> None:
        self._variables = variables
        self._decls: dict[str, ResourceDeclaration] = {}
        for d in declarations:
            if d.address in self._decls:
                raise DuplicateAddressError(d.address)
            self._decls[d.address] = d
        self._expanded: dict[str, list[str]] = {}

    def build(self) -> ResourceGraph:
        for address in sorted(self._decls):
            self._check_references(self._decls[address])

        for address in sorted(self._decls):
            decl = self._decls[address]
            n = _instance_count(decl, self._variables)
            if decl.is_counted:
                self._expanded[address] = [f"{address}[{i}]" for i in range(n)]
            else:
                self._expanded[address] = [address] if n else []
            if not self._expanded[address]:
                logger.debug("Pruned %s (zero instances)", address)

        instances: dict[str, ResourceInstance] = {}
        for address in sorted(self._decls):
            decl = self._decls[address]
            for i, inst_addr in enumerate(self._expanded[address]):
                index = i if decl.is_counted else None
                instances[inst_addr] = self._instantiate(decl, inst_addr, index)

        graph = ResourceGraph(instances, self._expanded)
        cycle = graph.find_cycle()
        if cycle is not None:
            raise CycleError(cycle)

        logger.debug(
            "Built graph: %d declarations, %d instances, %d edges",
            len(self._decls),
            len(instances),
            len(graph.edges),
        )
        return graph

    def _check_references(self, decl: ResourceDeclaration) -> None:
        """Reject references naming something absent from the declaration set."""
        for expr in decl.attributes.values():
            for r in collect_references(expr):
                target = self._decls.get(r.declaration)
                if target is None:
                    raise UnresolvedReferenceError(decl.address, str(r))
                if target.is_counted and r.index is None and not r.splat:
                    raise UnresolvedReferenceError(
                        decl.address, str(r), "resource has count; use [N] or [*]"
                    )
                if not target.is_counted and (r.index is not None or r.splat):
                    raise UnresolvedReferenceError(
                        decl.address, str(r), "resource has no count; drop the index"
                    )

        for dep in decl.depends_on:
            match = _DEPENDS_ON_PATTERN.match(dep)
            target = self._decls.get(match.group("decl")) if match else None
            if match is None or target is None:
                raise UnresolvedReferenceError(decl.address, dep, "depends_on")
            if match.group("index") is not None and not target.is_counted:
                raise UnresolvedReferenceError(
                    decl.address, dep, "resource has no count; drop the index"
                )

    def _ref_targets(self, r: RefExpr) -> list[str]:
        instances = self._expanded[r.declaration]
        if r.splat:
            return list(instances)
        if r.index is not None:
            address = f"{r.declaration}[{r.index}]"
            return [address] if address in instances else []
        return list(instances)

    def _depends_on_targets(self, dep: str) -> list[str]:
        if dep in self._expanded:
            return list(self._expanded[dep])
        match = _DEPENDS_ON_PATTERN.match(dep)
        assert match is not None
        return [dep] if dep in self._expanded[match.group("decl")] else []

    def _instantiate(
        self, decl: ResourceDeclaration, address: str, index: int | None
    ) -> ResourceInstance:
        attributes = {}
        for key, expr in decl.attributes.items():
            try:
                attributes[key] = bind(expr, variables=self._variables, count_index=index)
            except UnresolvedVariableError as e:
                raise UnresolvedReferenceError(
                    address, f"var.{e.name}", "undefined variable"
                ) from e
            except ExpressionTypeError as e:
                raise AttributeTypeError(address, key, str(e)) from e
            except ExpressionError as e:
                raise ValidationError([f"{address}.{key}: {e}"]) from e

        reference_targets: dict[str, list[str]] = {}
        for expr in attributes.values():
            for r in collect_references(expr):
                reference_targets.setdefault(r.target, self._ref_targets(r))

        dependencies = {t for targets in reference_targets.values() for t in targets}
        for dep in decl.depends_on:
            dependencies.update(self._depends_on_targets(dep))

        return ResourceInstance(
            address=address,
            resource_type=decl.resource_type,
            name=decl.name,
            index=index,
            attributes=attributes,
            dependencies=sorted(dependencies),
            reference_targets=reference_targets,
            replace_triggers=list(decl.replace_triggers),
            lifecycle=decl.lifecycle.model_copy(deep=True),
        )


def build(
    declarations: Sequence[ResourceDeclaration], variables: Mapping[str, Any] | None = None
) -> ResourceGraph:
    """Build the instance graph.

    Raises:
        DuplicateAddressError: Two declarations share an address.
        UnresolvedReferenceError: A reference, ``depends_on`` entry or
            variable names something that does not exist.
        ValidationError: ``count``/``condition`` is not statically evaluable
            or has the wrong type.
        CycleError: The dependency edges contain a cycle.
    """
    return _Builder(declarations, dict(variables or {})).build()
