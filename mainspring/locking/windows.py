"""Windows byte-range locking through msvcrt."""

import errno
import msvcrt
import os

from .file import FileLocker

# msvcrt cannot lock an unbounded range; lock far beyond any real lock file
_LOCK_LENGTH = 0x7FFFFFFF


class WindowsFileLocker(FileLocker):
    """Exclusive non-blocking msvcrt lock over the lock file's range.

    The lock dies with the holding handle, like the POSIX record lock.
    """

    def _engage(self, fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, _LOCK_LENGTH)
        except OSError as e:
            if e.errno in (errno.EACCES, errno.EDEADLK):
                raise BlockingIOError(e.errno, str(e)) from e
            raise

    def _release(self, fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, _LOCK_LENGTH)
