"""
Waiting for a state lock.

Lockers never block, so waiting is a polling loop: retry on
AlreadyLockedError with exponential backoff until the lock is taken, the
timeout expires, or the caller cancels. Other locking errors are raised
on the first attempt.
"""

import asyncio
import logging
import threading
import time
from typing import Callable, Optional

from ..errors import LockHeldError, LockTimeoutError, LockWaitCancelledError
from ..models import LockInfo
from .base import Locker

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 16.0


class _Backoff:
    """Delay schedule capped by a deadline."""

    def __init__(self, timeout: float, initial_delay: float, max_delay: float,
                 clock: Callable[[], float] = time.monotonic):
        self.deadline = clock() + timeout
        self.delay = initial_delay
        self.max_delay = max_delay
        self.clock = clock

    def next_delay(self) -> Optional[float]:
        """Return the next sleep, or None when the deadline has passed."""
        remaining = self.deadline - self.clock()
        if remaining <= 0:
            return None
        delay = min(self.delay, remaining)
        self.delay = min(self.delay * 2, self.max_delay)
        return delay


def acquire_lock(
    locker: Locker,
    info: LockInfo,
    timeout: float = 0.0,
    *,
    cancel: Optional[threading.Event] = None,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> str:
    """
    Acquire a lock, polling until timeout if it is held.

    Args:
        locker: Locker to acquire
        info: Holder information
        timeout: Seconds to keep retrying; 0 makes a single attempt
        cancel: Event that aborts the wait when set
        initial_delay: First retry delay in seconds
        max_delay: Upper bound of the doubling delay

    Returns:
        Lock id from the locker

    Raises:
        AlreadyLockedError: held and timeout is 0
        LockTimeoutError: still held when the timeout expired
        LockWaitCancelledError: cancel was set while waiting
    """
    backoff = _Backoff(timeout, initial_delay, max_delay)
    while True:
        if cancel is not None and cancel.is_set():
            raise LockWaitCancelledError(f"cancelled waiting for state lock on behalf of {info.operation!r}")
        try:
            return locker.lock(info)
        except LockHeldError as e:
            if timeout <= 0:
                raise
            delay = backoff.next_delay()
            if delay is None:
                raise LockTimeoutError(timeout, e.holder) from e
            logger.info(f"State is locked, retrying in {delay:.1f}s: {e}")

        if cancel is not None:
            if cancel.wait(delay):
                raise LockWaitCancelledError(f"cancelled waiting for state lock on behalf of {info.operation!r}")
        else:
            time.sleep(delay)


async def acquire_lock_async(
    locker: Locker,
    info: LockInfo,
    timeout: float = 0.0,
    *,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> str:
    """
    Asyncio counterpart of acquire_lock.

    Cancelling the awaiting task stops the wait; asyncio.CancelledError
    propagates unchanged.
    """
    backoff = _Backoff(timeout, initial_delay, max_delay)
    while True:
        try:
            return locker.lock(info)
        except LockHeldError as e:
            if timeout <= 0:
                raise
            delay = backoff.next_delay()
            if delay is None:
                raise LockTimeoutError(timeout, e.holder) from e
            logger.info(f"State is locked, retrying in {delay:.1f}s: {e}")
        await asyncio.sleep(delay)
