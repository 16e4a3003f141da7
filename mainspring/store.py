"""
Filesystem persistence for state snapshots.

The store is the only component that writes the state file. Writes are
optimistic: every write names the fingerprint captured by the read it is
based on, and is rejected if the file changed since.
"""

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .codec import StateCodec
from .errors import (
    CorruptStateError,
    SerialConflictError,
    StateIOError,
    StateNotFoundError,
)
from .fsutil import discard_temp_file, publish_temp_file, stage_temp_file, write_file_atomic
from .models import ConflictReport, StateSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fingerprint:
    """Identity of one committed state file."""
    lineage: str
    serial: int
    digest: str

    @classmethod
    def of(cls, snapshot: StateSnapshot, data: bytes) -> 'Fingerprint':
        return cls(snapshot.lineage, snapshot.serial, hashlib.sha256(data).hexdigest())


class FilesystemStore:
    """
    Local state file with atomic write-then-publish.

    Features:
    - Read the latest committed snapshot together with its fingerprint
    - Reject writes based on a stale fingerprint
    - Stage writes in a temporary file and publish by atomic rename
    - Optionally keep the previous state as a backup
    """

    def __init__(
        self,
        state_path: Path,
        codec: Optional[StateCodec] = None,
        backup_path: Optional[Path] = None,
    ):
        """
        Initialize FilesystemStore.

        Args:
            state_path: Path to the state file
            codec: Codec used to encode/decode snapshots
            backup_path: Where the previous state is copied before each write
                (None disables backups)
        """
        self.state_path = Path(state_path)
        self.codec = codec or StateCodec()
        self.backup_path = Path(backup_path) if backup_path else None

    def _read_bytes(self) -> Optional[bytes]:
        try:
            return self.state_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StateIOError(f"cannot read state {self.state_path}: {e}") from e

    def read(self) -> Tuple[StateSnapshot, Fingerprint]:
        """
        Read the latest committed snapshot.

        Returns:
            Tuple of (snapshot, fingerprint)

        Raises:
            StateNotFoundError: no state file exists yet
            CorruptStateError: the file cannot be decoded
            StateIOError: the file cannot be read
        """
        data = self._read_bytes()
        if data is None:
            raise StateNotFoundError(f"no state at {self.state_path}")
        snapshot = self.codec.decode(data)
        fingerprint = Fingerprint.of(snapshot, data)
        logger.debug(f"Read state {self.state_path} (lineage {snapshot.lineage}, serial {snapshot.serial})")
        return snapshot, fingerprint

    def current_fingerprint(self) -> Optional[Fingerprint]:
        """Fingerprint of the state on disk, or None when there is none."""
        try:
            return self.read()[1]
        except StateNotFoundError:
            return None

    def _check_unchanged(self, expected: Optional[Fingerprint]) -> Optional[bytes]:
        """Raise SerialConflictError unless the on-disk state still matches expected.

        Returns the current bytes (None when absent) for the backup.
        """
        data = self._read_bytes()
        if data is None:
            if expected is None:
                return None
            report = ConflictReport(local_serial=expected.serial, local_lineage=expected.lineage)
            raise SerialConflictError(report)

        if expected is not None and hashlib.sha256(data).hexdigest() == expected.digest:
            return data

        try:
            remote = self.codec.decode(data)
            remote_serial, remote_lineage = remote.serial, remote.lineage
        except CorruptStateError:
            remote_serial, remote_lineage = None, None

        if expected is None:
            report = ConflictReport(remote_serial=remote_serial, remote_lineage=remote_lineage)
        else:
            report = ConflictReport(
                local_serial=expected.serial,
                remote_serial=remote_serial,
                local_lineage=expected.lineage,
                remote_lineage=remote_lineage,
                lineage_mismatch=remote_lineage is not None and remote_lineage != expected.lineage,
            )
        raise SerialConflictError(report)

    def atomic_write(
        self, snapshot: StateSnapshot, expected: Optional[Fingerprint]
    ) -> Tuple[StateSnapshot, Fingerprint]:
        """
        Commit snapshot as the successor of the state identified by expected.

        Args:
            snapshot: Snapshot to write; it is not modified
            expected: Fingerprint from the read this write is based on, or
                None if no state existed at that read

        Returns:
            Tuple of (committed snapshot with its new serial, new fingerprint)

        Raises:
            SerialConflictError: the state changed since expected was read,
                or snapshot belongs to a different lineage
            StateIOError: the write failed; the previous state is intact
        """
        if expected is not None and snapshot.lineage != expected.lineage:
            raise SerialConflictError(ConflictReport(
                local_serial=snapshot.serial,
                remote_serial=expected.serial,
                local_lineage=snapshot.lineage,
                remote_lineage=expected.lineage,
                lineage_mismatch=True,
            ))

        base_serial = expected.serial if expected is not None else snapshot.serial
        committed = snapshot.model_copy(
            update={"serial": base_serial + 1, "tool_version": self.codec.tool_version},
            deep=True,
        )
        data = self.codec.encode(committed)

        try:
            temp_path = stage_temp_file(self.state_path, data)
        except OSError as e:
            raise StateIOError(f"cannot stage state for {self.state_path}: {e}") from e

        try:
            previous = self._check_unchanged(expected)
            if previous is not None and self.backup_path is not None:
                write_file_atomic(self.backup_path, previous)
            publish_temp_file(temp_path, self.state_path)
        except OSError as e:
            discard_temp_file(temp_path)
            raise StateIOError(f"cannot write state {self.state_path}: {e}") from e
        except BaseException:
            discard_temp_file(temp_path)
            raise

        fingerprint = Fingerprint.of(committed, data)
        logger.info(f"Committed state {self.state_path} (lineage {committed.lineage}, serial {committed.serial})")
        return committed, fingerprint
