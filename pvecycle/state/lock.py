"""
Advisory "shutdown in progress" lock.

The marker is a PID file whose existence, not content, means a shutdown is
running. Acquisition writes the PID to a temporary file and hard-links it
into place, which fails if the marker already exists, so readers never see
a half-written file.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from pvecycle.errors import LockError

logger = logging.getLogger(__name__)


class AdvisoryLock(Protocol):
    def try_acquire(self) -> bool:
        """Take the lock; False if somebody else already holds it."""
        ...

    def release(self) -> None:
        ...

    def is_held(self) -> bool:
        """True while any process holds the lock."""
        ...


class PidFileLock:
    """AdvisoryLock persisted as a PID file."""

    def __init__(self, path: Path, pid: Optional[int] = None):
        self.path = Path(path)
        self.pid = pid if pid is not None else os.getpid()

    def try_acquire(self) -> bool:
        """
        Raises:
            LockError: When the marker directory or file cannot be written.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
        except OSError as e:
            raise LockError(f"Cannot create shutdown lock {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(f"{self.pid}\n")
            os.link(tmp_name, self.path)
        except FileExistsError:
            logger.warning("Lock %s already held by pid %s", self.path, self.holder())
            return False
        except OSError as e:
            raise LockError(f"Cannot create shutdown lock {self.path}: {e}") from e
        finally:
            os.unlink(tmp_name)

        logger.debug("Acquired %s (pid %d)", self.path, self.pid)
        return True

    def release(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise LockError(f"Cannot remove shutdown lock {self.path}: {e}") from e
        logger.debug("Released %s", self.path)

    def is_held(self) -> bool:
        return self.path.exists()

    def holder(self) -> Optional[int]:
        """PID recorded in the marker, if readable."""
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None
