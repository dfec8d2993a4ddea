"""Graph building, diffing and plan execution."""

from infra_reconciler.engine.builder import ResourceGraph, build
from infra_reconciler.engine.differ import Differ
from infra_reconciler.engine.engine import Reconciler
from infra_reconciler.engine.errors import (
    ApplyCanceled,
    AttributeTypeError,
    CycleError,
    DependencyCycleError,
    DuplicateAddressError,
    EngineError,
    LockAcquisitionTimeout,
    NotFoundError,
    ProviderError,
    ProviderTimeout,
    StalePlanError,
    StateLockError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    ValidationError,
)
from infra_reconciler.engine.executor import PlanExecutor
from infra_reconciler.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from infra_reconciler.engine.settings import EngineSettings
from infra_reconciler.engine.types import (
    Action,
    ExecutionReport,
    Plan,
    PlanMetadata,
    PlannedOperation,
    ResourceChange,
    ResourceResult,
)

__all__ = [
    "Action",
    "ApplyCanceled",
    "AttributeTypeError",
    "CycleError",
    "DependencyCycleError",
    "Differ",
    "DuplicateAddressError",
    "EngineError",
    "EngineSettings",
    "ExecutionReport",
    "LockAcquisitionTimeout",
    "NotFoundError",
    "Plan",
    "PlanExecutor",
    "PlanMetadata",
    "PlannedOperation",
    "ProviderError",
    "ProviderTimeout",
    "Reconciler",
    "ResourceChange",
    "ResourceGraph",
    "ResourceResult",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "StalePlanError",
    "StateLockError",
    "UnknownResourceTypeError",
    "UnresolvedReferenceError",
    "ValidationError",
    "build",
]
