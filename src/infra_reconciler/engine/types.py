"""Engine types (plan, changes, metadata, execution report)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from infra_reconciler.core.state import StateEntry  # noqa: TC001
from infra_reconciler.engine.registry import ReplacePolicy  # noqa: TC001
from infra_reconciler.resources.base import ResourceInstance  # noqa: TC001


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"
    NOOP = "no-op"


class PlanMetadata(BaseModel):
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    """One instance's classification.

    ``before`` is the prior state entry, ``after`` the desired instance.
    ``planned`` holds resolved values for display, with unknown values
    rendered as ``(known after apply)``.
    """

    address: str
    resource_type: str
    action: Action
    before: StateEntry | None = None
    after: ResourceInstance | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    replace_reasons: list[str] = Field(default_factory=list)
    replace_policy: ReplacePolicy | None = None


OperationKind = Literal["create", "update", "destroy"]


class PlannedOperation(BaseModel):
    """An executable step; a replace contributes two of them."""

    key: str
    address: str
    resource_type: str
    kind: OperationKind
    deps: list[str] = Field(default_factory=list)
    provider_id: str | None = None
    deposed: bool = False


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]
    operations: list[PlannedOperation] = Field(default_factory=list)

    @property
    def edges(self) -> list[tuple[str, str]]:
        """``(before, after)`` operation-key pairs used to order the operations."""
        return [(dep, op.key) for op in self.operations for dep in op.deps]

    def change_for(self, address: str) -> ResourceChange | None:
        for c in self.changes:
            if c.address == address:
                return c
        return None

    def has_changes(self) -> bool:
        return bool(self.operations) or any(c.action != Action.NOOP for c in self.changes)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


ResultStatus = Literal["success", "failed", "skipped", "canceled", "no-op"]


class ResourceResult(BaseModel):
    address: str
    action: Action
    status: ResultStatus
    provider_id: str | None = None
    error: str | None = None


class ExecutionReport(BaseModel):
    """Per-address outcome of an apply."""

    results: dict[str, ResourceResult] = Field(default_factory=dict)
    canceled: bool = False

    def summary(self) -> dict[str, int]:
        counts: dict[str, int] = {
            "success": 0,
            "failed": 0,
            "skipped": 0,
            "canceled": 0,
            "no-op": 0,
        }
        for r in self.results.values():
            counts[r.status] += 1
        return counts

    @property
    def failed(self) -> list[str]:
        return sorted(a for a, r in self.results.items() if r.status == "failed")

    @property
    def skipped(self) -> list[str]:
        return sorted(a for a, r in self.results.items() if r.status == "skipped")

    @property
    def ok(self) -> bool:
        """True when nothing failed, was skipped or was canceled."""
        return not self.canceled and all(
            r.status in ("success", "no-op") for r in self.results.values()
        )
