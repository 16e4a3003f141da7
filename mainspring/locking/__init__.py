"""
Locking backends for Mainspring state.

PlatformFileLocker is the advisory file locker for the running platform,
selected once at import time.
"""

import sys

from .base import Locker, NoopLocker
from .file import FileLocker, lock_info_path_for, lock_path_for
from .wait import acquire_lock, acquire_lock_async

if sys.platform == "win32":
    from .windows import WindowsFileLocker as PlatformFileLocker
else:
    from .posix import PosixFileLocker as PlatformFileLocker

__all__ = [
    "Locker",
    "NoopLocker",
    "FileLocker",
    "PlatformFileLocker",
    "lock_path_for",
    "lock_info_path_for",
    "acquire_lock",
    "acquire_lock_async",
]
