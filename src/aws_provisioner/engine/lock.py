"""State locking."""

from __future__ import annotations

import getpass
import os
import socket
import sys
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from aws_provisioner.engine.errors import LockHeldError, StateLockError

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

POLL_INTERVAL = 0.1


def _who() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


class LockInfo(BaseModel):
    """Who holds a lock, recorded alongside it for operators."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    operation: str = ""
    who: str = Field(default_factory=_who)
    pid: int = Field(default_factory=os.getpid)
    created: datetime = Field(default_factory=lambda: datetime.now(UTC))


def wait_for(acquire: Callable[[], bool], *, timeout: float, location: str) -> None:
    """Call *acquire* until it returns True or *timeout* seconds have passed."""
    deadline = time.monotonic() + timeout
    while not acquire():
        if time.monotonic() >= deadline:
            raise LockHeldError(location)
        time.sleep(POLL_INTERVAL)


class StateLock:
    """Exclusive lock for a local state file.

    ``timeout`` is how long to wait for a lock held by another process;
    ``0`` fails immediately with ``LockHeldError``.
    """

    def __init__(self, state_path: Path, *, timeout: float = 0.0, operation: str = "") -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._operation = operation
        self._file = None

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    def __enter__(self) -> StateLock:
        # Keep fd open for lifetime of the lock.
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            wait_for(self._try_acquire, timeout=self._timeout, location=str(self._lock_path))
        except LockHeldError as e:
            holder = self.read_holder()
            self._close()
            raise LockHeldError(e.location, holder) from None
        except Exception as e:
            self._close()
            raise StateLockError(str(e)) from e
        self._write_holder()
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
            self._file.truncate(0)
            self._release()
        finally:
            self._close()

    def _close(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        finally:
            self._file = None

    def read_holder(self) -> dict[str, str]:
        """The recorded holder (who, operation, id), or {} when none is recorded."""
        try:
            text = self._lock_path.read_text(encoding="utf-8").strip()
        except OSError:
            return {}
        if not text:
            return {}
        try:
            info = LockInfo.model_validate_json(text)
        except ValueError:
            return {}
        return {"who": info.who, "operation": info.operation, "id": info.id}

    def _write_holder(self) -> None:
        assert self._file is not None
        self._file.seek(0)
        self._file.truncate(0)
        self._file.write(LockInfo(operation=self._operation).model_dump_json())
        self._file.flush()

    def _try_acquire(self) -> bool:
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
