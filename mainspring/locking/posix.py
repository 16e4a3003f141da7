"""POSIX advisory record locking through fcntl."""

import fcntl
import os

from .file import FileLocker


class PosixFileLocker(FileLocker):
    """Whole-file fcntl record lock (F_SETLK, F_WRLCK, start 0, length 0).

    fcntl record locks are used rather than flock() for the most consistent
    behavior across platforms, and some compatibility over NFS and CIFS.
    They are released by the kernel when the holding process exits or
    closes the descriptor.
    """

    def _engage(self, fd: int) -> None:
        fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB, 0, 0, os.SEEK_SET)

    def _release(self, fd: int) -> None:
        fcntl.lockf(fd, fcntl.LOCK_UN, 0, 0, os.SEEK_SET)
