"""In-process provider adapter."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any

from infra_reconciler.core.provider import ProviderAdapter
from infra_reconciler.engine.errors import NotFoundError

logger = logging.getLogger(__name__)


class InMemoryProvider(ProviderAdapter):
    """Keeps provider objects in a dict.

    Every object echoes its attributes back plus an ``id``. Calls are recorded
    in :attr:`calls` as ``(action, resource_type, provider_id)`` tuples.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._objects: dict[str, dict[str, Any]] = {}
        self._counters: dict[str, int] = {}
        self.calls: list[tuple[str, str, str]] = []

    @property
    def objects(self) -> dict[str, dict[str, Any]]:
        """Copy of ``provider_id -> {"type": ..., "attributes": ...}``."""
        with self._lock:
            return copy.deepcopy(self._objects)

    def _next_id(self, resource_type: str) -> str:
        n = self._counters.get(resource_type, 0) + 1
        self._counters[resource_type] = n
        return f"{resource_type}-{n:04d}"

    def _get(self, resource_type: str, provider_id: str) -> dict[str, Any]:
        obj = self._objects.get(provider_id)
        if obj is None or obj["type"] != resource_type:
            raise NotFoundError(resource_type, provider_id)
        return obj

    def _changed(self) -> None:
        """Hook called with the lock held after every mutation."""

    def create(self, resource_type: str, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        with self._lock:
            provider_id = self._next_id(resource_type)
            observed = {**copy.deepcopy(attributes), "id": provider_id}
            self._objects[provider_id] = {"type": resource_type, "attributes": observed}
            self.calls.append(("create", resource_type, provider_id))
            self._changed()
        logger.debug("Created %s %s", resource_type, provider_id)
        return provider_id, copy.deepcopy(observed)

    def read(self, resource_type: str, provider_id: str) -> dict[str, Any]:
        with self._lock:
            obj = self._get(resource_type, provider_id)
            self.calls.append(("read", resource_type, provider_id))
            return copy.deepcopy(obj["attributes"])

    def update(
        self, resource_type: str, provider_id: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        with self._lock:
            obj = self._get(resource_type, provider_id)
            observed = {**copy.deepcopy(attributes), "id": provider_id}
            obj["attributes"] = observed
            self.calls.append(("update", resource_type, provider_id))
            self._changed()
        logger.debug("Updated %s %s", resource_type, provider_id)
        return copy.deepcopy(observed)

    def destroy(self, resource_type: str, provider_id: str) -> None:
        with self._lock:
            self._get(resource_type, provider_id)
            del self._objects[provider_id]
            self.calls.append(("destroy", resource_type, provider_id))
            self._changed()
        logger.debug("Destroyed %s %s", resource_type, provider_id)
