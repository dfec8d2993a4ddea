"""Resource type registry factory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from infra_reconciler.config.modules import ModuleExpansionError, resolve_callable
from infra_reconciler.core.provider import ProviderAdapter
from infra_reconciler.engine.registry import ResourceTypeRegistry
from infra_reconciler.providers import InMemoryProvider, LocalProvider

if TYPE_CHECKING:
    from collections.abc import Callable

    from infra_reconciler.config.schema import Config, ProviderSpec

logger = logging.getLogger(__name__)

PROVIDERS_ENTRY_POINT_GROUP = "infra_reconciler.providers"

BUILTIN_PROVIDERS: dict[str, Callable[..., ProviderAdapter]] = {
    "memory": InMemoryProvider,
    "local": LocalProvider,
}


class ProviderResolutionError(Exception):
    """Raised when a provider factory cannot be resolved or instantiated."""


def _factory(call: str, config_dir: Path) -> Callable[..., Any]:
    if call in BUILTIN_PROVIDERS:
        return BUILTIN_PROVIDERS[call]
    try:
        return resolve_callable(call, config_dir, group=PROVIDERS_ENTRY_POINT_GROUP)
    except ModuleExpansionError as exc:
        raise ProviderResolutionError(str(exc)) from exc


def create_provider(name: str, spec: ProviderSpec, config_dir: Path) -> ProviderAdapter:
    """Instantiate provider *name* from its spec.

    A relative ``path`` argument is resolved against *config_dir*.
    """
    factory = _factory(spec.call, config_dir)
    kwargs = dict(spec.with_)
    if isinstance(kwargs.get("path"), str) and not Path(kwargs["path"]).is_absolute():
        kwargs["path"] = config_dir / kwargs["path"]

    try:
        adapter = factory(**kwargs)
    except Exception as exc:
        raise ProviderResolutionError(
            f"Provider '{name}' ({spec.call}) raised {type(exc).__name__}: {exc}"
        ) from exc

    if not isinstance(adapter, ProviderAdapter):
        raise ProviderResolutionError(
            f"Provider '{name}' ({spec.call}) must return a ProviderAdapter, "
            f"got {type(adapter).__name__}"
        )
    logger.debug("Created provider '%s' from %s", name, spec.call)
    return adapter


def build_registry(config: Config) -> ResourceTypeRegistry:
    """Create a fresh registry from the providers and resource types of *config*."""
    adapters = {
        name: create_provider(name, spec, config.config_dir)
        for name, spec in sorted(config.providers.items())
    }
    registry = ResourceTypeRegistry(default_adapter=adapters.get("default"))

    for resource_type, type_config in sorted(config.resource_types.items()):
        adapter = adapters.get(type_config.provider)
        if adapter is None:
            raise ProviderResolutionError(
                f"Resource type '{resource_type}' uses unknown provider '{type_config.provider}'"
            )
        registry.register(
            resource_type,
            adapter,
            replace_triggers=type_config.replace_triggers,
            replace_policy=type_config.replace_policy,
            timeout_seconds=type_config.timeout_seconds,
            schema=type_config.attribute_schema,
        )

    return registry
