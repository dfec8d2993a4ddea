"""Plan executor: runs planned operations on a bounded worker pool."""

from __future__ import annotations

import heapq
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from infra_reconciler.engine.errors import ProviderTimeout, ValidationError
from infra_reconciler.engine.graph import DependencyGraph
from infra_reconciler.engine.operations import build_operation
from infra_reconciler.engine.types import Action, ExecutionReport, ResourceResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from infra_reconciler.core.store import StateStore
    from infra_reconciler.engine.operations import Operation
    from infra_reconciler.engine.registry import ResourceTypeRegistry
    from infra_reconciler.engine.types import Plan, PlannedOperation, ResultStatus

logger = logging.getLogger(__name__)

ProgressEvent = Literal["start", "success", "failed", "skipped", "canceled"]
ProgressCallback = Callable[["PlannedOperation", ProgressEvent], None]

_POLL_INTERVAL = 0.1


@dataclass
class _Outcome:
    status: ResultStatus
    provider_id: str | None = None
    error: str | None = None


@dataclass
class _Running:
    key: str
    operation: Operation
    timeout: float | None
    started_at: float | None = None


@dataclass
class _Run:
    plan: Plan
    ops: dict[str, PlannedOperation]
    graph: DependencyGraph
    addresses: set[str] | None
    outcomes: dict[str, _Outcome] = field(default_factory=dict)
    waiting: dict[str, set[str]] = field(default_factory=dict)
    ready: list[str] = field(default_factory=list)
    active: dict[Future[str | None], _Running] = field(default_factory=dict)
    abandoned: list[Future[str | None]] = field(default_factory=list)


def _matches(address: str, target: str) -> bool:
    return address == target or address.startswith(f"{target}[")


def select_operations(plan: Plan, targets: Iterable[str] | None) -> set[str]:
    """Operation keys for *targets* plus everything they transitively depend on.

    A target may name an instance (``aws_instance.liberty[0]``) or a whole
    declaration (``aws_instance.liberty``).
    """
    keys = {op.key for op in plan.operations}
    if targets is None:
        return keys

    graph = DependencyGraph(keys, {op.key: op.deps for op in plan.operations})
    roots: set[str] = set()
    errors: list[str] = []
    for target in targets:
        if not any(_matches(c.address, target) for c in plan.changes):
            errors.append(f"Target '{target}' matches no resource in the plan")
        roots |= {op.key for op in plan.operations if _matches(op.address, target)}
    if errors:
        raise ValidationError(errors)
    return graph.transitive_dependencies(roots)


class PlanExecutor:
    """Executes a plan against the State Store.

    Operations are dispatched as soon as their dependencies succeeded, at most
    *parallelism* at a time. A failed operation marks its transitive
    dependents ``skipped`` while unrelated branches keep going. After
    :meth:`cancel` nothing new is dispatched; in-flight calls finish and
    everything left is reported ``canceled``.

    An adapter call exceeding its per-type timeout is reported as failed with
    :class:`ProviderTimeout`. The call itself cannot be interrupted, so
    :meth:`execute` waits for it before returning; its late state write then
    still happens inside the caller's run lock and a warning is logged.
    """

    def __init__(
        self,
        store: StateStore,
        registry: ResourceTypeRegistry,
        *,
        parallelism: int = 10,
        default_timeout: float | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        if parallelism < 1:
            raise ValueError(f"parallelism must be at least 1, got {parallelism}")
        self._store = store
        self._registry = registry
        self._parallelism = parallelism
        self._default_timeout = default_timeout
        self._progress = progress
        self._cancel = threading.Event()

    @property
    def canceled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop dispatching; in-flight operations are allowed to finish."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested; waiting for in-flight operations")
        self._cancel.set()

    def execute(self, plan: Plan, *, targets: Iterable[str] | None = None) -> ExecutionReport:
        targets = list(targets) if targets is not None else None
        selected = select_operations(plan, targets)
        ops = {op.key: op for op in plan.operations if op.key in selected}
        addresses = None
        if targets is not None:
            addresses = {op.address for op in ops.values()} | {
                c.address for c in plan.changes if any(_matches(c.address, t) for t in targets)
            }

        graph = DependencyGraph(ops, {k: op.deps for k, op in ops.items()})
        run = _Run(plan=plan, ops=ops, graph=graph, addresses=addresses)
        run.waiting = {key: graph.dependencies(key) for key in ops}
        run.ready = sorted(k for k, deps in run.waiting.items() if not deps)

        logger.info("Applying %d operations (parallelism=%d)", len(ops), self._parallelism)
        pool = ThreadPoolExecutor(
            max_workers=self._parallelism, thread_name_prefix="reconciler-worker"
        )
        try:
            try:
                self._loop(run, pool)
            except KeyboardInterrupt:
                logger.warning("Interrupted; letting in-flight operations finish")
                self.cancel()
                self._loop(run, pool)

            for key in sorted(ops):
                if key not in run.outcomes:
                    self._resolve(run, key, _Outcome("canceled"))
            return self._report(run)
        finally:
            # Timed-out calls still write state; they must land before the run lock is released.
            pending = [f for f in run.abandoned if not f.done()]
            if pending:
                logger.info("Waiting for %d timed-out operation(s) to finish", len(pending))
            pool.shutdown(wait=True, cancel_futures=True)

    # ── Scheduling ──────────────────────────────────────────────────

    def _loop(self, run: _Run, pool: ThreadPoolExecutor) -> None:
        while True:
            while run.ready and len(run.active) < self._parallelism and not self.canceled:
                key = heapq.heappop(run.ready)
                if key not in run.outcomes:
                    self._submit(run, key, pool)

            if not run.active:
                return

            done, _ = wait(
                list(run.active), timeout=self._wait_timeout(run), return_when=FIRST_COMPLETED
            )
            for future in sorted(done, key=lambda f: run.active[f].key):
                running = run.active.pop(future)
                self._complete(run, running.key, future)
            self._expire(run)

    def _submit(self, run: _Run, key: str, pool: ThreadPoolExecutor) -> None:
        planned = run.ops[key]
        registration = self._registry.get(planned.resource_type)
        running = _Running(
            key=key,
            operation=build_operation(planned, run.plan.change_for(planned.address)),
            timeout=registration.timeout_seconds or self._default_timeout,
        )

        def invoke() -> str | None:
            running.started_at = time.monotonic()
            return running.operation.run(store=self._store, adapter=registration.adapter)

        logger.debug("Dispatching %s (%s %s)", key, planned.kind, planned.address)
        if self._progress:
            self._progress(planned, "start")
        run.active[pool.submit(invoke)] = running

    def _wait_timeout(self, run: _Run) -> float:
        now = time.monotonic()
        remaining = [_POLL_INTERVAL]
        for running in run.active.values():
            if running.timeout is not None and running.started_at is not None:
                remaining.append(max(0.0, running.started_at + running.timeout - now))
        return min(remaining)

    def _expire(self, run: _Run) -> None:
        now = time.monotonic()
        for future, running in list(run.active.items()):
            if running.timeout is None or running.started_at is None:
                continue
            if now - running.started_at < running.timeout:
                continue
            del run.active[future]
            run.abandoned.append(future)
            error = ProviderTimeout(run.ops[running.key].address, running.timeout)
            logger.warning("%s", error)
            future.add_done_callback(_log_late_completion(running.key))
            self._fail(run, running.key, str(error))

    def _complete(self, run: _Run, key: str, future: Future[str | None]) -> None:
        try:
            provider_id = future.result()
        except Exception as e:
            logger.warning("%s failed: %s", key, e)
            self._fail(run, key, str(e) or type(e).__name__)
            return

        self._resolve(run, key, _Outcome("success", provider_id=provider_id))
        for dependent in sorted(run.graph.dependents(key)):
            pending = run.waiting[dependent]
            pending.discard(key)
            if not pending and dependent not in run.outcomes:
                heapq.heappush(run.ready, dependent)

    def _fail(self, run: _Run, key: str, error: str) -> None:
        self._resolve(run, key, _Outcome("failed", error=error))
        for dependent in sorted(run.graph.transitive_dependents(key)):
            if dependent not in run.outcomes:
                logger.debug("Skipping %s (depends on failed %s)", dependent, key)
                self._resolve(run, dependent, _Outcome("skipped", error=f"depends on {key}"))

    def _resolve(self, run: _Run, key: str, outcome: _Outcome) -> None:
        run.outcomes[key] = outcome
        if self._progress:
            self._progress(run.ops[key], outcome.status)  # type: ignore[arg-type]

    # ── Reporting ───────────────────────────────────────────────────

    def _report(self, run: _Run) -> ExecutionReport:
        by_address: dict[str, list[str]] = {}
        for key, op in run.ops.items():
            by_address.setdefault(op.address, []).append(key)

        report = ExecutionReport(canceled=self.canceled)
        for change in run.plan.changes:
            if run.addresses is not None and change.address not in run.addresses:
                continue
            keys = by_address.get(change.address)
            if not keys:
                report.results[change.address] = ResourceResult(
                    address=change.address,
                    action=change.action,
                    status="no-op",
                    provider_id=change.before.provider_id if change.before else None,
                )
                continue

            outcomes = [run.outcomes[k] for k in sorted(keys)]
            status = _aggregate([o.status for o in outcomes])
            errors = [o.error for o in outcomes if o.status == status and o.error]
            entry = self._store.get(change.address)
            report.results[change.address] = ResourceResult(
                address=change.address,
                action=change.action,
                status=status,
                provider_id=entry.provider_id if entry is not None else None,
                error="; ".join(errors) or None,
            )

        logger.info("Apply finished: %s", report.summary())
        return report


def _aggregate(statuses: list[ResultStatus]) -> ResultStatus:
    for status in ("failed", "skipped", "canceled"):
        if status in statuses:
            return status  # type: ignore[return-value]
    return "success"


def _log_late_completion(key: str) -> Callable[[Future[str | None]], None]:
    def callback(future: Future[str | None]) -> None:
        exc = future.exception()
        if exc is not None:
            logger.warning("%s finished after its timeout with an error: %s", key, exc)
        else:
            logger.warning("%s completed after its timeout; its state was recorded", key)

    return callback
