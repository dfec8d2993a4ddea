"""State store: the single shared mutable resource of a run.

The store publishes an immutable :class:`State` object and swaps it on every
write (copy-on-write), so readers never block. Writers serialize on a lock and
persist before the new state becomes visible, which makes each ``put`` and
``remove`` all-or-nothing for concurrent readers.
"""

from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import TYPE_CHECKING

from infra_reconciler.core.state import (
    State,
    StateEntry,
    compute_attributes_hash,
    compute_state_digest,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from contextlib import AbstractContextManager
    from pathlib import Path

logger = logging.getLogger(__name__)


class StateSnapshot:
    """Read-only copy of the state taken at one point in time."""

    def __init__(self, state: State) -> None:
        self._state = state.model_copy(deep=True)
        self._entries: Mapping[str, StateEntry] = MappingProxyType(self._state.resources)

    @property
    def lineage(self) -> str:
        return self._state.lineage

    @property
    def serial(self) -> int:
        return self._state.serial

    @property
    def entries(self) -> Mapping[str, StateEntry]:
        return self._entries

    def get(self, address: str) -> StateEntry | None:
        entry = self._entries.get(address)
        return entry.model_copy(deep=True) if entry is not None else None

    def addresses(self) -> list[str]:
        return sorted(self._entries)

    def digest(self) -> str:
        return compute_state_digest(self._state)

    def to_state(self) -> State:
        return self._state.model_copy(deep=True)

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.addresses())

    def __len__(self) -> int:
        return len(self._entries)


class StateStore:
    """Holds the last-known mapping from address to observed provider state.

    Pass a *path* for a JSON-file backed store (persisted on every write and
    locked with an advisory file lock), or nothing for an in-memory store.
    Stores are plain objects, so tests can build as many as they need.
    """

    def __init__(self, path: Path | None = None, *, state: State | None = None) -> None:
        self._path = path
        if state is None:
            state = State.load_or_create(path) if path is not None else State()
        self._state = state
        self._write_lock = threading.Lock()
        self._run_lock = threading.Lock()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def lineage(self) -> str:
        return self._state.lineage

    @property
    def serial(self) -> int:
        return self._state.serial

    def reload(self) -> None:
        """Re-read the backing file (another process may have written it)."""
        if self._path is None:
            return
        with self._write_lock:
            self._state = State.load_or_create(self._path)
        logger.debug(
            "State reloaded: serial=%d, %d resources", self.serial, len(self._state.resources)
        )

    def adopt_lineage(self, lineage: str) -> None:
        """Take over *lineage* while the store is still pristine (serial 0, empty).

        Lets a saved plan be applied in a fresh process before any state
        file exists.
        """
        with self._write_lock:
            if self._state.serial != 0 or self._state.resources:
                raise ValueError("Cannot adopt a lineage once state has been written")
            self._state = self._state.model_copy(update={"lineage": lineage})

    def get(self, address: str) -> StateEntry | None:
        entry = self._state.resources.get(address)
        return entry.model_copy(deep=True) if entry is not None else None

    def put(self, address: str, entry: StateEntry) -> None:
        if entry.address != address:
            raise ValueError(f"Entry address mismatch: {entry.address} != {address}")
        stored = entry.model_copy(
            deep=True, update={"attributes_hash": compute_attributes_hash(entry.attributes)}
        )
        with self._write_lock:
            resources = dict(self._state.resources)
            resources[address] = stored
            self._commit(resources)
        logger.debug("State put %s (provider_id=%s)", address, entry.provider_id)

    def remove(self, address: str) -> None:
        with self._write_lock:
            if address not in self._state.resources:
                return
            resources = dict(self._state.resources)
            del resources[address]
            self._commit(resources)
        logger.debug("State removed %s", address)

    def replace_all(self, entries: Mapping[str, StateEntry]) -> None:
        """Swap every entry in one write (one serial bump)."""
        resources = {
            addr: e.model_copy(
                deep=True, update={"attributes_hash": compute_attributes_hash(e.attributes)}
            )
            for addr, e in entries.items()
        }
        with self._write_lock:
            self._commit(resources)

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(self._state)

    def lock(self, timeout: float | None = None) -> AbstractContextManager[object]:
        """Exclusive run-level lock; raises ``LockAcquisitionTimeout`` past *timeout*."""
        from infra_reconciler.engine.lock import MemoryLock, StateLock

        if self._path is not None:
            return StateLock(self._path, timeout=timeout)
        return MemoryLock(self._run_lock, name="in-memory state", timeout=timeout)

    def _commit(self, resources: dict[str, StateEntry]) -> None:
        new_state = State(
            version=self._state.version,
            serial=self._state.serial + 1,
            lineage=self._state.lineage,
            resources=resources,
        )
        if self._path is not None:
            new_state.save(self._path)
        self._state = new_state
