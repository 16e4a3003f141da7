"""
Mainspring errors.

Every error surfaced to the orchestration engine derives from StateError:
- Locking errors (held, unavailable, token mismatch)
- Conflict errors (serial or lineage mismatch between read and write)
- Corruption errors (undecodable or unsupported state payloads)
- I/O errors (wrapped OSError, never retried)
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import ConflictReport, LockInfo


class StateError(Exception):
    """Base exception for all Mainspring errors."""
    pass


# =============================================================================
# Locking
# =============================================================================

class LockError(StateError):
    """Errors acquiring or releasing the state lock."""
    pass


class LockHeldError(LockError):
    """The state lock is owned by another holder."""

    def __init__(self, holder: Optional["LockInfo"] = None, message: Optional[str] = None):
        self.holder = holder
        if message is None:
            if holder is not None:
                message = f"state is locked: {holder.describe()}"
            else:
                message = "state is locked by another process (no lock info recorded)"
        super().__init__(message)


AlreadyLockedError = LockHeldError


class LockTimeoutError(LockHeldError):
    """Gave up waiting for a lock that stayed held."""

    def __init__(self, timeout: float, holder: Optional["LockInfo"] = None):
        self.timeout = timeout
        who = holder.describe() if holder is not None else "another process"
        super().__init__(holder, f"timed out after {timeout:g}s waiting for state lock held by {who}")


class LockUnavailableError(LockError):
    """The locking primitive could not be engaged at all."""
    pass


class LockIDMismatchError(LockError):
    """Unlock was called with a token that does not own the lock."""

    def __init__(self, given: str, held: str):
        self.given = given
        self.held = held
        super().__init__(f"lock id {given!r} does not match existing lock {held!r}")


class NotLockedError(LockError):
    """Unlock was called while no lock is held."""
    pass


class LockWaitCancelledError(LockError):
    """Waiting for the state lock was cancelled by the caller."""
    pass


# =============================================================================
# Conflicts
# =============================================================================

class ConflictDetectedError(StateError):
    """The state on disk changed since it was read."""

    def __init__(self, report: "ConflictReport"):
        self.report = report
        super().__init__(report.describe())

    @property
    def local_serial(self) -> Optional[int]:
        return self.report.local_serial

    @property
    def remote_serial(self) -> Optional[int]:
        return self.report.remote_serial

    @property
    def lineage_mismatch(self) -> bool:
        return self.report.lineage_mismatch


SerialConflictError = ConflictDetectedError


# =============================================================================
# Payload and I/O
# =============================================================================

class CorruptStateError(StateError):
    """The state payload cannot be turned into a snapshot."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class CodecError(CorruptStateError):
    """Errors raised while decoding a state payload."""
    pass


class MalformedPayloadError(CodecError):
    """The payload is not a well-formed state document."""
    pass


class UnsupportedVersionError(CodecError):
    """The payload declares a format version this decoder does not handle."""

    def __init__(self, version: int, minimum: int, maximum: int):
        self.version = version
        self.minimum = minimum
        self.maximum = maximum
        if version > maximum:
            reason = (
                f"state format version {version} is newer than the newest supported "
                f"version {maximum}; upgrade Mainspring to read this state"
            )
        else:
            reason = f"state format version {version} is older than the oldest supported version {minimum}"
        super().__init__(reason)


class StateNotFoundError(StateError):
    """No state has been written yet."""
    pass


class StateIOError(StateError):
    """Filesystem errors while reading or writing state."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)
