"""Local state locking."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from sqlmi_provisioner.engine.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.2


class StateLock:
    """Exclusive lock for a local state file.

    Acquisition is retried until *timeout* seconds have passed; ``timeout=0``
    fails immediately if another process holds the lock.
    """

    def __init__(self, state_path: Path, *, timeout: float = 30.0) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._file: TextIO | None = None

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    def __enter__(self) -> StateLock:
        if fcntl is None:  # pragma: no cover
            raise StateLockError("State locking is not supported on this platform")

        # Keep fd open for lifetime of the lock.
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire(handle)
        except BaseException:
            handle.close()
            raise
        self._file = handle
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
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None

    def _acquire(self, handle: TextIO) -> None:
        deadline = time.monotonic() + self._timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise StateLockError(
                        f"Timed out after {self._timeout:g}s waiting for state lock "
                        f"{self._lock_path}"
                    ) from None
                logger.debug("State lock %s is held, retrying", self._lock_path)
                time.sleep(_POLL_INTERVAL)
            except OSError as e:
                raise StateLockError(f"Failed to lock {self._lock_path}: {e}") from e
