"""Engine error types."""

from __future__ import annotations


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource type has no registration/adapter."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateAddressError(EngineError):
    """Raised when multiple declarations share the same address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class DependencyCycleError(EngineError):
    """Raised when dependencies contain a cycle."""

    def __init__(self, addresses: list[str]) -> None:
        msg = "Dependency cycle detected"
        if addresses:
            msg += f": {' -> '.join(addresses)}"
        super().__init__(msg)
        self.addresses = addresses


CycleError = DependencyCycleError


class UnresolvedReferenceError(EngineError):
    """Raised when an expression names something absent from the declaration set."""

    def __init__(self, address: str, reference: str, reason: str | None = None) -> None:
        msg = f"Resource '{address}' references unknown '{reference}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.address = address
        self.reference = reference


class AttributeTypeError(EngineError):
    """Raised when a resolved value has a type the attribute does not accept."""

    def __init__(self, address: str, attribute: str, message: str) -> None:
        super().__init__(f"{address}.{attribute}: {message}")
        self.address = address
        self.attribute = attribute


class ValidationError(EngineError):
    """One or more declarations failed validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class LockAcquisitionTimeout(StateLockError):
    """Raised when a competing run holds the state lock past the deadline."""

    def __init__(self, target: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for state lock on {target}")
        self.target = target
        self.timeout = timeout


class ApplyCanceled(EngineError):
    """Raised when a run is canceled before it could start."""


class ProviderError(Exception):
    """Raised by provider adapters when a provider-side call fails.

    These errors are local to one action: the executor records them in the
    report and skips dependents instead of aborting the run.
    """


class NotFoundError(ProviderError):
    """Raised by ``read``/``destroy`` when the provider object does not exist."""

    def __init__(self, resource_type: str, provider_id: str) -> None:
        super().__init__(f"{resource_type} '{provider_id}' not found")
        self.resource_type = resource_type
        self.provider_id = provider_id


class ProviderTimeout(ProviderError):
    """Raised when an adapter call exceeds its per-resource-type timeout."""

    def __init__(self, address: str, timeout: float) -> None:
        super().__init__(f"{address}: adapter call exceeded {timeout:g}s timeout")
        self.address = address
        self.timeout = timeout
