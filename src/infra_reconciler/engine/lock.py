"""State locking with an acquisition deadline."""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

from infra_reconciler.engine.errors import LockAcquisitionTimeout, StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

_POLL_INTERVAL = 0.05


class StateLock:
    """Exclusive advisory lock for a local state file.

    The lock is polled until *timeout* seconds have elapsed, then
    :class:`LockAcquisitionTimeout` is raised. ``timeout=None`` waits forever.
    """

    def __init__(self, state_path: Path, *, timeout: float | None = None) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._file = None

    def __enter__(self) -> StateLock:
        # Keep fd open for lifetime of the lock.
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire()
        except LockAcquisitionTimeout:
            self._close()
            raise
        except Exception as e:
            self._close()
            raise StateLockError(str(e)) from e
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            self._release()
        finally:
            self._close()

    def _close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            finally:
                self._file = None

    def _try_lock(self) -> bool:
        if self._file is None:
            raise StateLockError("Lock file is not open")

        if fcntl is not None:
            try:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return False
            return True

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            try:
                msvcrt.locking(self._file.fileno(), msvcrt.LK_NBLCK, 1)
            except OSError:
                return False
            return True

        raise StateLockError("State locking is not supported on this platform")

    def _acquire(self) -> None:
        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        while not self._try_lock():
            if deadline is not None and time.monotonic() >= deadline:
                raise LockAcquisitionTimeout(str(self._lock_path), self._timeout or 0.0)
            time.sleep(_POLL_INTERVAL)

    def _release(self) -> None:
        if self._file is None:
            return

        if fcntl is not None:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
            return


class MemoryLock:
    """Run lock for state stores that are not backed by a file."""

    def __init__(self, lock: threading.Lock, *, name: str, timeout: float | None = None) -> None:
        self._lock = lock
        self._name = name
        self._timeout = timeout
        self._held = False

    def __enter__(self) -> MemoryLock:
        acquired = self._lock.acquire(timeout=-1 if self._timeout is None else self._timeout)
        if not acquired:
            raise LockAcquisitionTimeout(self._name, self._timeout or 0.0)
        self._held = True
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._held:
            self._held = False
            self._lock.release()
