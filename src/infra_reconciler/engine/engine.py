"""Plan/apply engine."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from infra_reconciler.core.state import State, compute_attributes_hash
from infra_reconciler.core.store import StateSnapshot
from infra_reconciler.engine.builder import ResourceGraph, build
from infra_reconciler.engine.differ import Differ
from infra_reconciler.engine.errors import ApplyCanceled, NotFoundError, StalePlanError
from infra_reconciler.engine.executor import PlanExecutor, ProgressCallback
from infra_reconciler.engine.settings import EngineSettings

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from infra_reconciler.core.state import StateEntry
    from infra_reconciler.core.store import StateStore
    from infra_reconciler.engine.registry import ResourceTypeRegistry
    from infra_reconciler.engine.types import ExecutionReport, Plan
    from infra_reconciler.resources.base import ResourceDeclaration

logger = logging.getLogger(__name__)

__all__ = ["ProgressCallback", "Reconciler"]


class Reconciler:
    """Terraform-like plan/apply engine over pluggable provider adapters."""

    def __init__(
        self,
        *,
        store: StateStore,
        registry: ResourceTypeRegistry,
        settings: EngineSettings | None = None,
        variables: Mapping[str, Any] | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._settings = settings or EngineSettings()
        self._variables = dict(variables or {})
        self._executor: PlanExecutor | None = None
        self._cancel_requested = threading.Event()

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def registry(self) -> ResourceTypeRegistry:
        return self._registry

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def build(self, declarations: Sequence[ResourceDeclaration]) -> ResourceGraph:
        return build(declarations, self._variables)

    def _lock(self) -> Any:
        return self._store.lock(self._settings.lock_timeout_seconds)

    def _refreshed_entries(self) -> tuple[dict[str, StateEntry], bool]:
        logger.debug("Refreshing state through provider adapters")
        snapshot = self._store.snapshot()
        entries: dict[str, StateEntry] = {}
        changed = False

        for address in snapshot.addresses():
            entry = snapshot.entries[address]
            adapter = self._registry.get(entry.resource_type).adapter
            try:
                attrs = adapter.read(entry.resource_type, entry.provider_id)
            except NotFoundError:
                logger.info("%s (%s) no longer exists", address, entry.provider_id)
                changed = True
                continue

            if attrs != entry.attributes:
                logger.debug("Drift detected on %s", address)
                entry = entry.model_copy(
                    update={"attributes": attrs, "attributes_hash": compute_attributes_hash(attrs)}
                )
                changed = True
            entries[address] = entry

        logger.debug("State refreshed, changed=%s", changed)
        return entries, changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from the providers. Returns (pre_refresh, post_refresh)."""
        with self._lock():
            self._store.reload()
            before = self._store.snapshot().to_state()
            entries, changed = self._refreshed_entries()
            if changed and persist:
                self._store.replace_all(entries)
                return before, self._store.snapshot().to_state()
            after = before.model_copy(deep=True, update={"resources": entries})
            return before, after

    def plan(
        self,
        declarations: Sequence[ResourceDeclaration],
        *,
        destroy: bool = False,
        refresh: bool = True,
    ) -> Plan:
        logger.info(
            "Planning %d declarations (destroy=%s, refresh=%s)",
            len(declarations),
            destroy,
            refresh,
        )
        graph = self.build(declarations)
        differ = Differ(
            self._registry, default_replace_policy=self._settings.default_replace_policy
        )

        with self._lock():
            self._store.reload()
            if refresh:
                entries, changed = self._refreshed_entries()
                if changed:
                    # Validate against the refreshed view before persisting it.
                    current = self._store.snapshot().to_state()
                    preview = StateSnapshot(
                        current.model_copy(update={"resources": entries})
                    )
                    differ.diff(graph, preview, destroy=destroy, refresh=refresh)
                    self._store.replace_all(entries)

            plan = differ.diff(graph, self._store.snapshot(), destroy=destroy, refresh=refresh)

        logger.info("Plan: %s", plan.summary())
        return plan

    def apply(
        self,
        plan: Plan,
        *,
        targets: Iterable[str] | None = None,
        progress: ProgressCallback | None = None,
        parallelism: int | None = None,
    ) -> ExecutionReport:
        with self._lock():
            self._store.reload()
            snapshot = self._store.snapshot()
            if snapshot.serial == 0 and not len(snapshot) and plan.metadata.state_serial == 0:
                # No state written yet: bootstrap from the plan (saved-plan semantics).
                self._store.adopt_lineage(plan.metadata.state_lineage)
                snapshot = self._store.snapshot()

            if snapshot.lineage != plan.metadata.state_lineage:
                raise StalePlanError("State lineage changed; re-run plan")
            if snapshot.serial != plan.metadata.state_serial:
                raise StalePlanError("State serial changed; re-run plan")
            if snapshot.digest() != plan.metadata.state_digest:
                raise StalePlanError("State digest changed; re-run plan")

            if self._cancel_requested.is_set():
                self._cancel_requested.clear()
                raise ApplyCanceled("Apply canceled before it started")

            executor = PlanExecutor(
                self._store,
                self._registry,
                parallelism=parallelism or self._settings.parallelism_limit,
                default_timeout=self._settings.default_timeout_seconds,
                progress=progress,
            )
            self._executor = executor
            if self._cancel_requested.is_set():
                executor.cancel()
            try:
                return executor.execute(plan, targets=targets)
            finally:
                self._executor = None
                self._cancel_requested.clear()

    def cancel(self) -> None:
        """Cooperatively cancel a running (or the next) apply."""
        self._cancel_requested.set()
        executor = self._executor
        if executor is not None:
            executor.cancel()
