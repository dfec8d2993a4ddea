"""Built-in provider adapters."""

from infra_reconciler.providers.local import LocalProvider
from infra_reconciler.providers.memory import InMemoryProvider

__all__ = ["InMemoryProvider", "LocalProvider"]
