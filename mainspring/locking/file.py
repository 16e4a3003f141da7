"""
Sidecar-file locking shared by the POSIX and Windows lockers.

Layout next to a state file ``state.json``:
- ``.state.json.lock``       descriptor holding the advisory record lock
- ``.state.json.lock.info``  JSON LockInfo of the current holder

The lock file itself is never removed, so every process locks the same
inode. The info file is written after acquisition and removed on unlock;
one left behind by a killed holder is overwritten by the next acquirer.
"""

import logging
import os
import threading
from abc import abstractmethod
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from ..errors import (
    LockHeldError,
    LockIDMismatchError,
    LockUnavailableError,
    NotLockedError,
)
from ..fsutil import write_file_atomic
from ..models import LockInfo
from .base import Locker

logger = logging.getLogger(__name__)

# Record locks belong to the process, not the descriptor: a second
# descriptor in the same process would "acquire" the held lock, and closing
# it would drop the first holder's lock. Track held paths per process.
_held_paths: Dict[str, str] = {}
_held_paths_guard = threading.Lock()


def _forget_held_paths() -> None:
    # Record locks are not inherited across fork
    _held_paths.clear()


if hasattr(os, "register_at_fork"):
    os.register_at_fork(after_in_child=_forget_held_paths)


def lock_path_for(state_path: Path) -> Path:
    return state_path.parent / f".{state_path.name}.lock"


def lock_info_path_for(state_path: Path) -> Path:
    return state_path.parent / f".{state_path.name}.lock.info"


class FileLocker(Locker):
    """Advisory whole-file lock on a sidecar lock file.

    Subclasses provide the platform primitive through _engage/_release.
    One instance holds at most one lock; it is not re-entrant.
    """

    def __init__(self, state_path: Path):
        """
        Initialize FileLocker.

        Args:
            state_path: Path of the state file protected by this lock
        """
        self.state_path = Path(state_path)
        self.lock_path = lock_path_for(self.state_path)
        self.info_path = lock_info_path_for(self.state_path)
        self._key = os.path.abspath(self.lock_path)
        self._fd: Optional[int] = None
        self._lock_id: Optional[str] = None

    @abstractmethod
    def _engage(self, fd: int) -> None:
        """Take an exclusive non-blocking lock over the whole file.

        Raises BlockingIOError/PermissionError on contention and OSError
        for any other failure.
        """

    @abstractmethod
    def _release(self, fd: int) -> None:
        """Release the range taken by _engage."""

    @property
    def locked(self) -> bool:
        return self._lock_id is not None

    def lock(self, info: LockInfo) -> str:
        if self._lock_id is not None:
            raise LockHeldError(self.lock_info())

        with _held_paths_guard:
            if self._key in _held_paths:
                # Opening (and closing) another descriptor here would drop the holder's lock
                raise LockHeldError(self.lock_info())

            logger.debug(f"Locking {self.state_path} using {type(self).__name__}")
            try:
                self.lock_path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o666)
            except OSError as e:
                raise LockUnavailableError(f"cannot open lock file {self.lock_path}: {e}") from e

            try:
                self._engage(fd)
            except (BlockingIOError, PermissionError):
                os.close(fd)
                raise LockHeldError(self.lock_info())
            except OSError as e:
                os.close(fd)
                raise LockUnavailableError(f"cannot lock {self.lock_path}: {e}") from e

            _held_paths[self._key] = info.id
            self._fd = fd
            self._lock_id = info.id

        if not info.path:
            info = info.model_copy(update={"path": str(self.state_path)})
        try:
            write_file_atomic(self.info_path, info.model_dump_json(indent=2).encode("utf-8"))
        except OSError as e:
            # Holder info is diagnostic only; the record lock is what excludes
            logger.warning(f"Could not write lock info {self.info_path}: {e}")

        logger.info(f"Acquired state lock {info.id} for {self.state_path}")
        return info.id

    def unlock(self, lock_id: str) -> None:
        if self._lock_id is None or self._fd is None:
            raise NotLockedError(f"{self.state_path} is not locked by this locker")
        if lock_id != self._lock_id:
            raise LockIDMismatchError(lock_id, self._lock_id)

        logger.debug(f"Unlocking {self.state_path} using {type(self).__name__}")
        try:
            self.info_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove lock info {self.info_path}: {e}")

        fd = self._fd
        with _held_paths_guard:
            self._fd = None
            self._lock_id = None
            _held_paths.pop(self._key, None)
            try:
                self._release(fd)
            finally:
                # Closing the descriptor releases the lock even if _release failed
                os.close(fd)

        logger.info(f"Released state lock {lock_id} for {self.state_path}")

    def lock_info(self) -> Optional[LockInfo]:
        try:
            data = self.info_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read lock info {self.info_path}: {e}")
            return None
        try:
            return LockInfo.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable lock info {self.info_path}: {e}")
            return None
