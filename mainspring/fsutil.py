"""
Crash-consistent file writing helpers.

Files are staged in a temporary file in the destination directory, synced,
and published with an atomic rename. A failure before the rename leaves the
destination untouched.
"""

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def stage_temp_file(path: Path, data: bytes) -> Path:
    """
    Write data to a durable temporary file next to path.

    The name carries the pid plus a random part, so concurrent writers
    never collide.

    Args:
        path: Final destination the temp file will be renamed onto
        data: Bytes to write

    Returns:
        Path of the synced temporary file
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.{os.getpid()}.", suffix=".tmp"
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        discard_temp_file(temp_path)
        raise
    return temp_path


def discard_temp_file(temp_path: Path) -> None:
    try:
        temp_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temporary file {temp_path}: {e}")


def fsync_directory(directory: Path) -> None:
    """Persist a rename by syncing its directory entry (no-op on Windows)."""
    if os.name == "nt":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def publish_temp_file(temp_path: Path, path: Path) -> None:
    """Atomically rename a staged temp file over path."""
    os.replace(temp_path, path)
    fsync_directory(path.parent)


def write_file_atomic(path: Path, data: bytes) -> None:
    """Stage and publish data at path in one step."""
    temp_path = stage_temp_file(path, data)
    try:
        publish_temp_file(temp_path, path)
    except BaseException:
        discard_temp_file(temp_path)
        raise
