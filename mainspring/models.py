"""
Pydantic models for Mainspring state management.

This module contains the data models shared by the codec, store, lockers
and the StateManager facade:
- StateSnapshot and its resource/output records
- LockInfo describing the current lock holder
- ConflictReport describing a rejected write
"""

import getpass
import os
import socket
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# State Snapshot Models
# =============================================================================

class ResourceInstance(BaseModel):
    """Recorded state of one provisioned resource instance."""
    provider: str = ""
    dependencies: List[str] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class OutputValue(BaseModel):
    """Root module output value."""
    value: Any = None
    sensitive: bool = False


def new_lineage() -> str:
    """Generate a fresh lineage identifier."""
    return str(uuid.uuid4())


class StateSnapshot(BaseModel):
    """Complete state of the tracked infrastructure at one serial.

    The lineage is fixed when the snapshot is first created; the serial is
    assigned by the store on every accepted write.
    """
    lineage: str
    serial: int = 0
    tool_version: str = ""
    resources: Dict[str, ResourceInstance] = Field(default_factory=dict)
    outputs: Dict[str, OutputValue] = Field(default_factory=dict)

    @field_validator('lineage')
    @classmethod
    def validate_lineage(cls, v):
        """Validate lineage is non-empty."""
        if not v:
            raise ValueError("Lineage must be a non-empty string")
        return v

    @field_validator('serial')
    @classmethod
    def validate_serial(cls, v):
        """Validate serial is non-negative."""
        if v < 0:
            raise ValueError("Serial must be non-negative")
        return v

    @classmethod
    def new(cls) -> 'StateSnapshot':
        """Create an empty snapshot starting a new lineage."""
        return cls(lineage=new_lineage())

    def add_resource(self, address: str, instance: ResourceInstance) -> None:
        if address in self.resources:
            raise ValueError(f"Resource already exists: {address}")
        self.resources[address] = instance

    def remove_resource(self, address: str) -> ResourceInstance:
        if address not in self.resources:
            raise KeyError(address)
        return self.resources.pop(address)

    def move_resource(self, source: str, destination: str) -> None:
        """Rename a resource address, rewriting dependency references to it."""
        if source not in self.resources:
            raise KeyError(source)
        if destination in self.resources:
            raise ValueError(f"Resource already exists: {destination}")
        self.resources[destination] = self.resources.pop(source)
        for instance in self.resources.values():
            instance.dependencies = [
                destination if dep == source else dep for dep in instance.dependencies
            ]


# =============================================================================
# Locking Models
# =============================================================================

def _holder_identity() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


class LockInfo(BaseModel):
    """Information recorded about the holder of a state lock."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unguessable lock token")
    operation: str = Field(default="", description="Human readable operation holding the lock")
    info: str = Field(default="", description="Extra free-form details")
    who: str = Field(default_factory=_holder_identity, description="user@host of the holder")
    pid: int = Field(default_factory=os.getpid, description="Process id of the holder")
    version: str = Field(default="", description="Tool version of the holder")
    path: str = Field(default="", description="Path of the locked state")
    created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def describe(self) -> str:
        """One-line description of the holder for diagnostics."""
        text = f"{self.who} (pid {self.pid}, lock id {self.id}, since {self.created.isoformat()})"
        if self.operation:
            text = f"{self.operation!r} by {text}"
        return text


# =============================================================================
# Conflict Models
# =============================================================================

class ConflictReport(BaseModel):
    """Details of a write rejected because the state changed since it was read."""
    local_serial: Optional[int] = None
    remote_serial: Optional[int] = None
    local_lineage: Optional[str] = None
    remote_lineage: Optional[str] = None
    lineage_mismatch: bool = False

    def describe(self) -> str:
        if self.lineage_mismatch:
            return (
                f"state lineage changed: read {self.local_lineage!r} but found "
                f"{self.remote_lineage!r}; the state was replaced and will not be overwritten"
            )
        if self.remote_serial is None:
            return f"state changed since it was read at serial {self.local_serial}; current state is missing or unreadable"
        if self.local_serial is None:
            return f"state was created by another writer (serial {self.remote_serial}) since it was read"
        return (
            f"state serial conflict: read serial {self.local_serial} but the "
            f"current serial is {self.remote_serial}; re-run against fresh state"
        )


__all__ = [
    'ResourceInstance', 'OutputValue', 'StateSnapshot', 'new_lineage',
    'LockInfo', 'ConflictReport',
]
