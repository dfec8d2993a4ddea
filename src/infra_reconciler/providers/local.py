"""JSON-file backed provider adapter for local runs."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from infra_reconciler.core.state import atomic_write_text
from infra_reconciler.providers.memory import InMemoryProvider

logger = logging.getLogger(__name__)


class LocalProvider(InMemoryProvider):
    """An :class:`InMemoryProvider` persisted to a JSON file after each mutation.

    Lets ``plan``/``apply`` round-trip across CLI invocations without any
    cloud account.
    """

    def __init__(self, path: Path | str = ".reconciler-provider.json") -> None:
        super().__init__()
        self._path = Path(path)
        if self._path.exists():
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._objects = data.get("objects", {})
            self._counters = data.get("counters", {})
            logger.debug("Loaded %d provider objects from %s", len(self._objects), self._path)

    @property
    def path(self) -> Path:
        return self._path

    def _changed(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"objects": self._objects, "counters": self._counters}
        atomic_write_text(self._path, json.dumps(payload, indent=2, sort_keys=True) + "\n")
