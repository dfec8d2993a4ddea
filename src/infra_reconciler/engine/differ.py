"""Differ: classify every instance against the state snapshot and order the work."""

from __future__ import annotations

import hashlib
import json
import logging
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from infra_reconciler import __version__
from infra_reconciler.engine.errors import AttributeTypeError, ValidationError
from infra_reconciler.engine.graph import DependencyGraph
from infra_reconciler.engine.registry import value_matches_kind
from infra_reconciler.engine.types import (
    Action,
    Plan,
    PlanMetadata,
    PlannedOperation,
    ResourceChange,
)
from infra_reconciler.resources.expressions import (
    UNKNOWN,
    ExpressionError,
    ExpressionTypeError,
    contains_unknown,
    render_unknowns,
)

if TYPE_CHECKING:
    from infra_reconciler.core.state import StateEntry
    from infra_reconciler.core.store import StateSnapshot
    from infra_reconciler.engine.builder import ResourceGraph
    from infra_reconciler.engine.registry import ReplacePolicy, ResourceTypeRegistry
    from infra_reconciler.resources.base import ResourceInstance

logger = logging.getLogger(__name__)


def _same_value(a: Any, b: Any) -> bool:
    """Structural equality where ``True`` is not ``1``; ints and floats compare as numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_same_value(a[k], b[k]) for k in a)
    if isinstance(a, list | tuple) and isinstance(b, list | tuple):
        return len(a) == len(b) and all(_same_value(x, y) for x, y in zip(a, b, strict=True))
    if isinstance(a, dict | list | tuple) or isinstance(b, dict | list | tuple):
        return False
    return a == b


def _values_differ(desired: Any, prior: Any) -> bool:
    """Deep comparison; anything still unknown counts as a difference."""
    if contains_unknown(desired):
        return True
    return not _same_value(desired, prior)


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_config_digest(graph: ResourceGraph | None) -> str:
    """Digest of the desired instance set (addresses, bound expressions, edges)."""
    items: list[dict[str, Any]] = []
    if graph is not None:
        for address in graph.addresses():
            inst = graph.instances[address]
            items.append(inst.model_dump(mode="json"))
    return hashlib.sha256(_canonical_json(items).encode("utf-8")).hexdigest()


class _OperationGraph:
    """Accumulates planned operations keyed by operation key."""

    def __init__(self) -> None:
        self.ops: dict[str, PlannedOperation] = {}
        self.live: dict[str, str] = {}
        self.destroys: dict[str, str] = {}
        self.deposed: dict[str, list[str]] = defaultdict(list)

    def add(self, op: PlannedOperation) -> PlannedOperation:
        if op.key in self.ops:
            raise ValueError(f"Duplicate operation key in plan: {op.key}")
        self.ops[op.key] = op
        return op

    def ordered(self) -> list[PlannedOperation]:
        for op in self.ops.values():
            op.deps = sorted(set(op.deps))
        order = DependencyGraph(self.ops, {k: op.deps for k, op in self.ops.items()})
        return [self.ops[k] for k in order.topological_order()]


class Differ:
    """Computes a :class:`Plan` from a resource graph and a state snapshot.

    References are resolved against the state entries of their targets. A
    target that is about to be created or replaced, or whose referenced
    attribute is about to change, resolves to ``UNKNOWN`` ("known after
    apply"); desired values of unapplied resources are never used.
    """

    def __init__(
        self,
        registry: ResourceTypeRegistry,
        *,
        default_replace_policy: ReplacePolicy = "destroy_before_create",
    ) -> None:
        self._registry = registry
        self._default_replace_policy = default_replace_policy

    def diff(
        self,
        graph: ResourceGraph | None,
        snapshot: StateSnapshot,
        *,
        destroy: bool = False,
        refresh: bool = False,
    ) -> Plan:
        entries = snapshot.entries
        changes: list[ResourceChange] = []
        errors: list[str] = []

        desired = set() if destroy or graph is None else set(graph.instances)
        if not destroy and graph is not None:
            changes.extend(self._classify_all(graph, snapshot, errors))

        destroy_set = set(entries) - desired
        for address in self._destroy_order(snapshot, destroy_set):
            entry = entries[address]
            # An orphan of an unregistered type fails the plan, not the apply.
            self._registry.get(entry.resource_type)
            inst = graph.get(address) if graph is not None else None
            if inst is not None and inst.lifecycle.prevent_destroy:
                errors.append(f"{address}: lifecycle.prevent_destroy forbids destroying it")
            changes.append(
                ResourceChange(
                    address=address,
                    resource_type=entry.resource_type,
                    action=Action.DESTROY,
                    before=entry.model_copy(deep=True),
                    planned=None,
                )
            )
            logger.debug("Classified %s as destroy", address)

        if errors:
            raise ValidationError(errors)

        operations = self._build_operations(changes, graph, snapshot)

        metadata = PlanMetadata(
            created_at=datetime.now(UTC),
            destroy=destroy,
            refresh=refresh,
            state_lineage=snapshot.lineage,
            state_serial=snapshot.serial,
            state_digest=snapshot.digest(),
            config_digest=compute_config_digest(None if destroy else graph),
            engine_version=__version__,
        )
        plan = Plan(metadata=metadata, changes=changes, operations=operations)
        logger.debug("Plan summary: %s", plan.summary())
        return plan

    # ── Classification ──────────────────────────────────────────────

    def _classify_all(
        self, graph: ResourceGraph, snapshot: StateSnapshot, errors: list[str]
    ) -> list[ResourceChange]:
        entries = snapshot.entries
        actions: dict[str, Action] = {}
        changed_attrs: dict[str, set[str]] = {}

        def lookup(target: str, attribute: str) -> Any:
            action = actions.get(target)
            entry = entries.get(target)
            if entry is None or action in (Action.CREATE, Action.REPLACE):
                return UNKNOWN
            if action == Action.UPDATE and attribute in changed_attrs.get(target, ()):
                return UNKNOWN
            return entry.value(attribute)

        changes: list[ResourceChange] = []
        for address in graph.topological_order():
            inst = graph.instances[address]
            change = self._classify(inst, entries.get(address), lookup)
            actions[address] = change.action
            changed_attrs[address] = set(change.diff or {})
            if change.action == Action.REPLACE and inst.lifecycle.prevent_destroy:
                errors.append(f"{address}: lifecycle.prevent_destroy forbids replacing it")
            changes.append(change)
        return changes

    def _resolve(self, inst: ResourceInstance, lookup: Any) -> dict[str, Any]:
        reg = self._registry.get(inst.resource_type)
        resolved: dict[str, Any] = {}
        for key in inst.attributes:
            try:
                value = inst.resolve_attribute(key, lookup)
            except ExpressionTypeError as e:
                raise AttributeTypeError(inst.address, key, str(e)) from e
            except ExpressionError as e:
                raise ValidationError([f"{inst.address}.{key}: {e}"]) from e

            kind = reg.schema.get(key)
            if kind is not None and not contains_unknown(value):
                if not value_matches_kind(value, kind):
                    raise AttributeTypeError(
                        inst.address, key, f"expected {kind}, got {type(value).__name__}"
                    )
            resolved[key] = value
        return resolved

    def _replace_policy(self, inst: ResourceInstance) -> ReplacePolicy:
        cbd = inst.lifecycle.create_before_destroy
        if cbd is not None:
            return "create_before_destroy" if cbd else "destroy_before_create"
        reg = self._registry.get(inst.resource_type)
        return reg.replace_policy or self._default_replace_policy

    def _classify(
        self, inst: ResourceInstance, entry: StateEntry | None, lookup: Any
    ) -> ResourceChange:
        resolved = self._resolve(inst, lookup)
        planned = render_unknowns(resolved)

        if entry is None:
            logger.debug("Classified %s as create", inst.address)
            return ResourceChange(
                address=inst.address,
                resource_type=inst.resource_type,
                action=Action.CREATE,
                after=inst,
                planned=planned,
            )

        ignored = set(inst.lifecycle.ignore_changes)
        # Keys applied before but no longer declared converge to null.
        dropped = {k: None for k in entry.applied_keys if k not in resolved}
        diff = {
            k: {"from": entry.attributes.get(k), "to": render_unknowns(v)}
            for k, v in {**resolved, **dropped}.items()
            if k not in ignored and _values_differ(v, entry.attributes.get(k))
        }

        triggers = self._registry.get(inst.resource_type).replace_triggers | set(
            inst.replace_triggers
        )
        reasons = sorted(k for k in diff if k in triggers)
        if entry.resource_type != inst.resource_type:
            reasons.insert(0, "resource_type")

        if reasons:
            action = Action.REPLACE
        elif diff:
            action = Action.UPDATE
        else:
            action = Action.NOOP

        logger.debug("Classified %s as %s", inst.address, action.value)
        return ResourceChange(
            address=inst.address,
            resource_type=inst.resource_type,
            action=action,
            before=entry.model_copy(deep=True),
            after=inst,
            planned=planned,
            diff=diff or None,
            replace_reasons=reasons,
            replace_policy=self._replace_policy(inst) if action == Action.REPLACE else None,
        )

    @staticmethod
    def _destroy_order(snapshot: StateSnapshot, destroy_set: set[str]) -> list[str]:
        dep_map = {
            addr: [d for d in snapshot.entries[addr].dependencies if d in destroy_set]
            for addr in destroy_set
        }
        return DependencyGraph(destroy_set, dep_map).reverse_topological_order()

    # ── Operation graph ─────────────────────────────────────────────

    def _build_operations(
        self,
        changes: list[ResourceChange],
        graph: ResourceGraph | None,
        snapshot: StateSnapshot,
    ) -> list[PlannedOperation]:
        entries = snapshot.entries
        g = _OperationGraph()

        state_dependents: dict[str, set[str]] = defaultdict(set)
        for address, entry in entries.items():
            for dep in entry.dependencies:
                state_dependents[dep].add(address)

        # Leftovers of interrupted create-before-destroy replacements.
        for address in sorted(entries):
            entry = entries[address]
            for i, provider_id in enumerate(entry.deposed):
                op = g.add(
                    PlannedOperation(
                        key=f"{address}#deposed-{i}",
                        address=address,
                        resource_type=entry.resource_type,
                        kind="destroy",
                        provider_id=provider_id,
                        deposed=True,
                    )
                )
                g.deposed[address].append(op.key)

        for c in changes:
            leftovers = list(g.deposed.get(c.address, []))
            match c.action:
                case Action.NOOP:
                    continue
                case Action.CREATE | Action.UPDATE:
                    kind = "create" if c.action == Action.CREATE else "update"
                    g.add(
                        PlannedOperation(
                            key=c.address,
                            address=c.address,
                            resource_type=c.resource_type,
                            kind=kind,
                            deps=list(leftovers),
                            provider_id=c.before.provider_id if c.before else None,
                        )
                    )
                    g.live[c.address] = c.address
                case Action.REPLACE:
                    assert c.before is not None
                    create = g.add(
                        PlannedOperation(
                            key=f"{c.address}#create",
                            address=c.address,
                            resource_type=c.resource_type,
                            kind="create",
                            deps=list(leftovers),
                        )
                    )
                    destroy = g.add(
                        PlannedOperation(
                            key=f"{c.address}#destroy",
                            address=c.address,
                            resource_type=c.before.resource_type,
                            kind="destroy",
                            deps=list(leftovers),
                            provider_id=c.before.provider_id,
                            deposed=c.replace_policy == "create_before_destroy",
                        )
                    )
                    if destroy.deposed:
                        destroy.deps.append(create.key)
                    else:
                        create.deps.append(destroy.key)
                        g.destroys[c.address] = destroy.key
                    g.live[c.address] = create.key
                case Action.DESTROY:
                    assert c.before is not None
                    g.add(
                        PlannedOperation(
                            key=c.address,
                            address=c.address,
                            resource_type=c.resource_type,
                            kind="destroy",
                            deps=list(leftovers),
                            provider_id=c.before.provider_id,
                        )
                    )
                    g.destroys[c.address] = c.address

        # Creates and updates follow the live operations of what they reference.
        if graph is not None:
            for address, key in g.live.items():
                for dep in graph.dependencies(address):
                    if dep in g.live:
                        g.ops[key].deps.append(g.live[dep])

        # Destroys wait for the destroys of whatever depended on the object.
        for address, key in g.destroys.items():
            for dependent in state_dependents.get(address, ()):
                if dependent in g.destroys:
                    g.ops[key].deps.append(g.destroys[dependent])
                # An orphan is destroyed only once former dependents moved away.
                if g.ops[key].address not in g.live and dependent in g.live:
                    g.ops[key].deps.append(g.live[dependent])

        # Deposed halves of a create-before-destroy wait for dependents to move over.
        for c in changes:
            if c.action != Action.REPLACE or c.replace_policy != "create_before_destroy":
                continue
            key = f"{c.address}#destroy"
            dependents = set(state_dependents.get(c.address, ()))
            if graph is not None and c.address in graph:
                dependents |= graph.dependents(c.address)
            for dependent in dependents:
                if dependent in g.live:
                    g.ops[key].deps.append(g.live[dependent])
                if dependent in g.destroys:
                    g.ops[key].deps.append(g.destroys[dependent])

        ordered = g.ordered()
        logger.debug("Planned %d operations", len(ordered))
        return ordered
