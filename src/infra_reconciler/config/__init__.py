"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from infra_reconciler.config.loader import ConfigError, load_config
from infra_reconciler.config.registry import ProviderResolutionError, build_registry
from infra_reconciler.config.schema import Config, ProviderSpec, ResourceTypeConfig
from infra_reconciler.core.state import State
from infra_reconciler.core.store import StateStore
from infra_reconciler.engine.engine import ProgressCallback, Reconciler
from infra_reconciler.engine.types import Action, ResourceChange

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from infra_reconciler.engine.builder import ResourceGraph
    from infra_reconciler.engine.types import ExecutionReport, Plan

__all__ = [
    "Config",
    "ConfigError",
    "ProviderSpec",
    "ResourceTypeConfig",
    "State",
    "apply",
    "drift",
    "graph",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "reconciler_from_config",
    "refresh",
    "save_state",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def reconciler_from_config(config: Config) -> Reconciler:
    """Build a ``Reconciler`` from a ``Config`` instance."""
    try:
        registry = build_registry(config)
    except ProviderResolutionError as exc:
        raise ConfigError(str(exc)) from exc
    return Reconciler(
        store=StateStore(config.state_path),
        registry=registry,
        settings=config.settings,
        variables=config.variables,
    )


def graph(config: Config) -> ResourceGraph:
    """Build the instance graph without touching state or providers."""
    return reconciler_from_config(config).build(config.declarations)


def plan(config: Config, *, destroy: bool = False, refresh: bool = True) -> Plan:
    """Plan changes for the given configuration."""
    reconciler = reconciler_from_config(config)
    return reconciler.plan(config.declarations, destroy=destroy, refresh=refresh)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    targets: Iterable[str] | None = None,
    progress: ProgressCallback | None = None,
    parallelism: int | None = None,
) -> ExecutionReport:
    """Apply a previously computed plan."""
    reconciler = reconciler_from_config(config)
    return reconciler.apply(
        plan_obj, targets=targets, progress=progress, parallelism=parallelism
    )


def plan_and_apply(
    config: Config, *, destroy: bool = False, refresh: bool = True
) -> ExecutionReport:
    """Plan and apply in one step."""
    reconciler = reconciler_from_config(config)
    plan_obj = reconciler.plan(config.declarations, destroy=destroy, refresh=refresh)
    return reconciler.apply(plan_obj)


def refresh(config: Config) -> tuple[list[ResourceChange], State]:
    """Refresh state through the providers (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state to disk.
    """
    reconciler = reconciler_from_config(config)
    old_state, new_state = reconciler.refresh()
    return _build_drift_changes(old_state, new_state), new_state


def save_state(config: Config, state: State) -> None:
    """Persist the resources of *state* as the next state serial."""
    store = StateStore(config.state_path)
    with store.lock(config.settings.lock_timeout_seconds):
        store.reload()
        store.replace_all(state.resources)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between the state file and the live providers."""
    changes, _ = refresh(config)
    return changes


def _build_drift_changes(old_state: State, new_state: State) -> list[ResourceChange]:
    """Compare old vs new state and return a list of drift changes."""
    changes: list[ResourceChange] = []
    for addr in sorted(old_state.resources):
        old = old_state.resources[addr]
        new = new_state.resources.get(addr)
        if new is None:
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=old.resource_type,
                    action=Action.DESTROY,
                    before=old,
                )
            )
            continue
        if old.attributes != new.attributes:
            all_keys = sorted(set(old.attributes) | set(new.attributes))
            diff = {
                k: {"from": old.attributes.get(k), "to": new.attributes.get(k)}
                for k in all_keys
                if old.attributes.get(k) != new.attributes.get(k)
            }
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=new.resource_type,
                    action=Action.UPDATE,
                    before=old,
                    planned=dict(new.attributes),
                    diff=diff,
                )
            )
    return changes
