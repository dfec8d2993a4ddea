"""Apply operations.

Each planned operation becomes a runtime operation that resolves its
attributes against the State Store (never against desired values), calls the
provider adapter, and records the outcome in the store right away.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from infra_reconciler.core.state import StateEntry
from infra_reconciler.engine.errors import NotFoundError, UnresolvedReferenceError
from infra_reconciler.engine.types import Action

if TYPE_CHECKING:
    from infra_reconciler.core.provider import ProviderAdapter
    from infra_reconciler.core.store import StateStore
    from infra_reconciler.engine.types import PlannedOperation, ResourceChange
    from infra_reconciler.resources.base import ResourceInstance

logger = logging.getLogger(__name__)


class Operation(Protocol):
    planned: PlannedOperation
    change: ResourceChange | None

    def run(self, *, store: StateStore, adapter: ProviderAdapter) -> str | None:
        """Execute this operation and persist its result.

        Returns:
            The provider id the address ends up with, if any.
        """


def _resolve_live(inst: ResourceInstance, store: StateStore) -> dict[str, Any]:
    def lookup(target: str, attribute: str) -> Any:
        entry = store.get(target)
        if entry is None:
            raise UnresolvedReferenceError(
                inst.address, f"{target}.{attribute}", "no state entry at apply time"
            )
        return entry.value(attribute)

    return inst.resolve_attributes(lookup)


def _desired(change: ResourceChange | None, key: str) -> ResourceInstance:
    if change is None or change.after is None:
        raise ValueError(f"Missing desired instance for operation {key}")
    return change.after


@dataclass
class CreateOperation:
    planned: PlannedOperation
    change: ResourceChange | None

    def run(self, *, store: StateStore, adapter: ProviderAdapter) -> str | None:
        inst = _desired(self.change, self.planned.key)
        attrs = _resolve_live(inst, store)

        provider_id, observed = adapter.create(inst.resource_type, attrs)
        now = datetime.now(UTC)

        deposed: list[str] = []
        prior = store.get(inst.address)
        if (
            prior is not None
            and self.change is not None
            and self.change.action == Action.REPLACE
            and self.change.replace_policy == "create_before_destroy"
        ):
            # The old object stays tracked until its destroy half succeeds.
            deposed = [*prior.deposed, prior.provider_id]

        store.put(
            inst.address,
            StateEntry(
                address=inst.address,
                resource_type=inst.resource_type,
                provider_id=provider_id,
                attributes=observed,
                applied_keys=sorted(attrs),
                dependencies=list(inst.dependencies),
                deposed=deposed,
                created_at=now,
                last_success_at=now,
            ),
        )
        logger.debug("Created %s as %s", inst.address, provider_id)
        return provider_id


@dataclass
class UpdateOperation:
    planned: PlannedOperation
    change: ResourceChange | None

    def run(self, *, store: StateStore, adapter: ProviderAdapter) -> str | None:
        inst = _desired(self.change, self.planned.key)
        prior = store.get(inst.address)
        if prior is None:
            raise ValueError(f"Missing state for update operation: {inst.address}")
        attrs = _resolve_live(inst, store)

        observed = adapter.update(inst.resource_type, prior.provider_id, attrs)
        store.put(
            inst.address,
            prior.model_copy(
                update={
                    "attributes": observed,
                    "applied_keys": sorted(attrs),
                    "dependencies": list(inst.dependencies),
                    "last_success_at": datetime.now(UTC),
                }
            ),
        )
        logger.debug("Updated %s (%s)", inst.address, prior.provider_id)
        return prior.provider_id


@dataclass
class DestroyOperation:
    """Destroys an object; deposed destroys only drop the id from the entry."""

    planned: PlannedOperation
    change: ResourceChange | None

    def run(self, *, store: StateStore, adapter: ProviderAdapter) -> str | None:
        planned = self.planned
        provider_id = planned.provider_id
        if provider_id is None:
            raise ValueError(f"Missing provider id for destroy operation: {planned.key}")

        try:
            adapter.destroy(planned.resource_type, provider_id)
        except NotFoundError:
            logger.debug("%s (%s) already gone", planned.address, provider_id)

        if not planned.deposed:
            store.remove(planned.address)
            logger.debug("Destroyed %s (%s)", planned.address, provider_id)
            return None

        entry = store.get(planned.address)
        if entry is not None and provider_id in entry.deposed:
            store.put(
                planned.address,
                entry.model_copy(
                    update={"deposed": [d for d in entry.deposed if d != provider_id]}
                ),
            )
        logger.debug("Destroyed deposed object %s of %s", provider_id, planned.address)
        return entry.provider_id if entry is not None else None


def build_operation(planned: PlannedOperation, change: ResourceChange | None) -> Operation:
    match planned.kind:
        case "create":
            return CreateOperation(planned=planned, change=change)
        case "update":
            return UpdateOperation(planned=planned, change=change)
        case "destroy":
            return DestroyOperation(planned=planned, change=change)
    raise ValueError(f"Unknown operation kind: {planned.kind}")
