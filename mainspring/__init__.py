"""
Mainspring - State management for Clockwork infrastructure.

Mainspring keeps the durable, versioned record of provisioned resources
that plan/apply runs read and mutate:
- Single writer per state through advisory file locks
- Conflict detection through lineage, serial and content fingerprints
- Crash-consistent writes through stage, sync and atomic rename

Conflicts are detected and rejected, never merged.
"""

__version__ = "0.1.0"

from .codec import StateCodec
from .manager import StateManager
from .models import ConflictReport, LockInfo, OutputValue, ResourceInstance, StateSnapshot
from .settings import MainspringSettings, get_settings, reload_settings
from .store import FilesystemStore, Fingerprint

__all__ = [
    "StateManager",
    "FilesystemStore",
    "Fingerprint",
    "StateCodec",
    "StateSnapshot",
    "ResourceInstance",
    "OutputValue",
    "LockInfo",
    "ConflictReport",
    "MainspringSettings",
    "get_settings",
    "reload_settings",
]
