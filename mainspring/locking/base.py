"""Locker capability shared by every locking backend."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import LockHeldError, LockIDMismatchError, NotLockedError
from ..models import LockInfo

logger = logging.getLogger(__name__)


class Locker(ABC):
    """Mutual exclusion over one named state.

    Implementations never block: lock() either succeeds immediately or
    raises. Waiting is layered on top by acquire_lock().
    """

    @abstractmethod
    def lock(self, info: LockInfo) -> str:
        """Acquire the lock for the holder described by info.

        Returns:
            The lock id that must be passed to unlock()

        Raises:
            AlreadyLockedError: another holder owns the lock
            LockUnavailableError: the primitive cannot be engaged
        """

    @abstractmethod
    def unlock(self, lock_id: str) -> None:
        """Release the lock identified by lock_id.

        Raises:
            LockIDMismatchError: lock_id does not own the lock
            NotLockedError: no lock is held
        """

    def lock_info(self) -> Optional[LockInfo]:
        """Return the recorded info of the current holder, if any."""
        return None


class NoopLocker(Locker):
    """Locker used when locking is disabled.

    Hands out tokens and checks them on unlock, but excludes nobody.
    """

    def __init__(self):
        self._held: Optional[LockInfo] = None

    def lock(self, info: LockInfo) -> str:
        if self._held is not None:
            raise LockHeldError(self._held)
        logger.debug(f"Locking disabled; issuing lock id {info.id} without exclusion")
        self._held = info
        return info.id

    def unlock(self, lock_id: str) -> None:
        if self._held is None:
            raise NotLockedError("no lock is held")
        if lock_id != self._held.id:
            raise LockIDMismatchError(lock_id, self._held.id)
        self._held = None

    def lock_info(self) -> Optional[LockInfo]:
        return self._held
