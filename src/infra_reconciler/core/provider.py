"""Provider adapter interface.

The reconciliation core never embeds provider-specific logic; it only calls
this interface, so AWS, another cloud, or an in-memory fake can be swapped in.
"""

from __future__ import annotations

from typing import Any


class ProviderAdapter:
    """Base class for provider adapters.

    Subclass and override the CRUD methods. Failures are signalled by raising
    :class:`~infra_reconciler.engine.errors.ProviderError` (or any exception);
    ``read`` and ``destroy`` raise
    :class:`~infra_reconciler.engine.errors.NotFoundError` when the object is
    gone. Adapters may be called from several worker threads at once.
    """

    def create(self, resource_type: str, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Create the object. Return ``(provider_id, observed_attributes)``."""
        raise NotImplementedError

    def read(self, resource_type: str, provider_id: str) -> dict[str, Any]:
        """Return the observed attributes of an existing object."""
        raise NotImplementedError

    def update(
        self, resource_type: str, provider_id: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        """Update the object in place. Return observed attributes.

        *attributes* is the complete desired set; keys missing from it are no
        longer managed and should be cleared.
        """
        raise NotImplementedError

    def destroy(self, resource_type: str, provider_id: str) -> None:
        """Destroy the object."""
        raise NotImplementedError
