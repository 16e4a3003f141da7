"""
StateManager - lock/read/mutate/write lifecycle over one state.

The orchestration engine hands a mutation to with_lock(); the manager takes
the lock, reads the latest snapshot, applies the mutation, commits it with
an optimistic-concurrency check and releases the lock on every exit path.
Conflicts are never retried or merged here: the caller re-runs against
fresh state.
"""

import inspect
import logging
import threading
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, Optional, Tuple, Union

from .codec import StateCodec
from .errors import SerialConflictError, StateNotFoundError
from .locking import Locker, NoopLocker, PlatformFileLocker, acquire_lock, acquire_lock_async
from .models import LockInfo, StateSnapshot
from .settings import MainspringSettings, get_settings
from .store import FilesystemStore, Fingerprint

logger = logging.getLogger(__name__)

Mutation = Callable[[StateSnapshot], Optional[StateSnapshot]]
AsyncMutation = Callable[[StateSnapshot], Union[Optional[StateSnapshot], Awaitable[Optional[StateSnapshot]]]]


class StateManager:
    """
    Facade composing a FilesystemStore and a Locker.

    Each instance is explicit and owns its store and locker; workflows that
    need state receive the instance they should use.
    """

    def __init__(
        self,
        store: FilesystemStore,
        locker: Locker,
        lock_timeout: float = 0.0,
        lock_poll_initial: float = 1.0,
        lock_poll_max: float = 16.0,
    ):
        """
        Initialize StateManager.

        Args:
            store: Store holding the state file
            locker: Locker guarding mutations of that state
            lock_timeout: Default seconds to wait for a held lock (0 fails fast)
            lock_poll_initial: First delay between lock attempts
            lock_poll_max: Maximum delay between lock attempts
        """
        self.store = store
        self.locker = locker
        self.lock_timeout = lock_timeout
        self.lock_poll_initial = lock_poll_initial
        self.lock_poll_max = lock_poll_max
        self.last_fingerprint: Optional[Fingerprint] = None

    @classmethod
    def from_settings(
        cls, settings: Optional[MainspringSettings] = None, state_path: Optional[Path] = None
    ) -> "StateManager":
        """
        Build the local filesystem wiring from settings.

        Args:
            settings: Settings to use (defaults to get_settings())
            state_path: Overrides settings.state_path
        """
        settings = settings or get_settings()
        if state_path is not None:
            settings = settings.model_copy(update={"state_path": Path(state_path)})

        store = FilesystemStore(settings.state_path, StateCodec(), backup_path=settings.backup_path)
        if settings.lock_enabled:
            locker: Locker = PlatformFileLocker(settings.state_path)
        else:
            logger.warning("State locking is disabled; concurrent runs may corrupt state")
            locker = NoopLocker()

        return cls(
            store,
            locker,
            lock_timeout=settings.lock_timeout,
            lock_poll_initial=settings.lock_poll_initial,
            lock_poll_max=settings.lock_poll_max,
        )

    # =========================================================================
    # Read-only access
    # =========================================================================

    def refresh_state(self) -> Optional[StateSnapshot]:
        """
        Read the latest state without taking the lock.

        Never writes. The fingerprint seen is kept in last_fingerprint.

        Returns:
            The snapshot, or None if no state exists yet
        """
        try:
            snapshot, fingerprint = self.store.read()
        except StateNotFoundError:
            self.last_fingerprint = None
            return None
        self.last_fingerprint = fingerprint
        return snapshot

    # =========================================================================
    # Locked critical section
    # =========================================================================

    def _new_lock_info(self, operation: str) -> LockInfo:
        from . import __version__
        return LockInfo(operation=operation, version=__version__, path=str(self.store.state_path))

    def _release(self, lock_id: str, failing: bool) -> None:
        try:
            self.locker.unlock(lock_id)
        except Exception as e:
            if not failing:
                raise
            # The original error is the one the caller needs to see
            logger.error(f"Failed to release state lock {lock_id}: {e}")

    @contextmanager
    def locked(
        self,
        operation: str = "",
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[LockInfo]:
        """
        Hold the state lock for the duration of the block.

        Args:
            operation: Description recorded in the lock info
            timeout: Seconds to wait for a held lock (defaults to lock_timeout)
            cancel: Event that aborts the wait for the lock

        Yields:
            LockInfo of the acquired lock
        """
        info = self._new_lock_info(operation)
        lock_id = acquire_lock(
            self.locker,
            info,
            self.lock_timeout if timeout is None else timeout,
            cancel=cancel,
            initial_delay=self.lock_poll_initial,
            max_delay=self.lock_poll_max,
        )
        try:
            yield info
        except BaseException:
            self._release(lock_id, failing=True)
            raise
        else:
            self._release(lock_id, failing=False)

    @asynccontextmanager
    async def locked_async(self, operation: str = "", timeout: Optional[float] = None) -> AsyncIterator[LockInfo]:
        """Asyncio counterpart of locked(); task cancellation still unlocks."""
        info = self._new_lock_info(operation)
        lock_id = await acquire_lock_async(
            self.locker,
            info,
            self.lock_timeout if timeout is None else timeout,
            initial_delay=self.lock_poll_initial,
            max_delay=self.lock_poll_max,
        )
        try:
            yield info
        except BaseException:
            self._release(lock_id, failing=True)
            raise
        else:
            self._release(lock_id, failing=False)

    def _read_for_update(self) -> Tuple[StateSnapshot, Optional[Fingerprint]]:
        try:
            return self.store.read()
        except StateNotFoundError:
            snapshot = StateSnapshot.new()
            logger.info(f"No state at {self.store.state_path}; starting lineage {snapshot.lineage}")
            return snapshot, None

    def _commit(self, snapshot: StateSnapshot, fingerprint: Optional[Fingerprint]) -> StateSnapshot:
        try:
            committed, new_fingerprint = self.store.atomic_write(snapshot, fingerprint)
        except SerialConflictError as e:
            report = e.report
            logger.warning(
                f"Rejected state write: local serial {report.local_serial}, "
                f"remote serial {report.remote_serial}, lineage mismatch {report.lineage_mismatch}"
            )
            raise
        self.last_fingerprint = new_fingerprint
        return committed

    def with_lock(
        self,
        mutation: Mutation,
        operation: str = "",
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> StateSnapshot:
        """
        Run mutation against the latest state under the lock and commit it.

        Args:
            mutation: Callable editing the snapshot in place, or returning a
                replacement snapshot of the same lineage
            operation: Description recorded in the lock info
            timeout: Seconds to wait for a held lock (defaults to lock_timeout)
            cancel: Event that aborts the wait for the lock

        Returns:
            The committed snapshot with its new serial

        Raises:
            AlreadyLockedError: the lock is held by someone else
            SerialConflictError: the state changed underneath the lock
            CorruptStateError: the current state cannot be decoded
            StateIOError: reading or writing failed
        """
        with self.locked(operation, timeout=timeout, cancel=cancel):
            snapshot, fingerprint = self._read_for_update()
            result = mutation(snapshot)
            if result is not None:
                snapshot = result
            return self._commit(snapshot, fingerprint)

    async def with_lock_async(
        self,
        mutation: AsyncMutation,
        operation: str = "",
        timeout: Optional[float] = None,
    ) -> StateSnapshot:
        """
        Asyncio counterpart of with_lock(); mutation may be a coroutine function.

        Cancelling the task while the mutation runs releases the lock before
        asyncio.CancelledError propagates.

        Only lock waits and the mutation yield to the event loop. Reading
        and committing the state file (including its fsyncs) run
        synchronously on the loop thread.
        """
        async with self.locked_async(operation, timeout=timeout):
            snapshot, fingerprint = self._read_for_update()
            result: Any = mutation(snapshot)
            if inspect.isawaitable(result):
                result = await result
            if result is not None:
                snapshot = result
            return self._commit(snapshot, fingerprint)
