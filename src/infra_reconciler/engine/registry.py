"""Resource type registry for adapter dispatch."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from infra_reconciler.engine.errors import UnknownResourceTypeError

if TYPE_CHECKING:
    from infra_reconciler.core.provider import ProviderAdapter

ReplacePolicy = Literal["destroy_before_create", "create_before_destroy"]
AttributeKind = Literal["string", "number", "bool", "list", "map", "any"]

_KIND_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "bool": (bool,),
    "list": (list, tuple),
    "map": (dict,),
}


def value_matches_kind(value: Any, kind: AttributeKind) -> bool:
    """Check a resolved value against a schema kind. ``None`` always matches."""
    if value is None or kind == "any":
        return True
    if kind == "number" and isinstance(value, bool):
        return False
    return isinstance(value, _KIND_TYPES[kind])


@dataclass(frozen=True)
class ResourceTypeRegistration:
    resource_type: str
    adapter: ProviderAdapter
    replace_triggers: frozenset[str] = frozenset()
    replace_policy: ReplacePolicy | None = None
    timeout_seconds: float | None = None
    schema: dict[str, AttributeKind] = field(default_factory=dict)


class ResourceTypeRegistry:
    """Registry mapping resource_type -> adapter and per-type behaviour.

    Types without an explicit registration fall back to *default_adapter*
    (with empty triggers and no schema) when one is given.
    """

    def __init__(self, default_adapter: ProviderAdapter | None = None) -> None:
        self._registrations: dict[str, ResourceTypeRegistration] = {}
        self._default_adapter = default_adapter

    @property
    def default_adapter(self) -> ProviderAdapter | None:
        return self._default_adapter

    def register(
        self,
        resource_type: str,
        adapter: ProviderAdapter,
        *,
        replace_triggers: list[str] | tuple[str, ...] = (),
        replace_policy: ReplacePolicy | None = None,
        timeout_seconds: float | None = None,
        schema: dict[str, AttributeKind] | None = None,
    ) -> None:
        if not resource_type:
            raise ValueError("Resource type must be a non-empty string")
        if resource_type in self._registrations:
            raise ValueError(f"Resource type already registered: {resource_type}")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive for {resource_type}")

        self._registrations[resource_type] = ResourceTypeRegistration(
            resource_type=resource_type,
            adapter=adapter,
            replace_triggers=frozenset(replace_triggers),
            replace_policy=replace_policy,
            timeout_seconds=timeout_seconds,
            schema=dict(schema or {}),
        )

    def get(self, resource_type: str) -> ResourceTypeRegistration:
        try:
            return self._registrations[resource_type]
        except KeyError as e:
            if self._default_adapter is None:
                raise UnknownResourceTypeError(resource_type) from e
            return ResourceTypeRegistration(
                resource_type=resource_type, adapter=self._default_adapter
            )

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._registrations or (
            isinstance(resource_type, str) and self._default_adapter is not None
        )

    def registered_types(self) -> list[str]:
        return sorted(self._registrations)
