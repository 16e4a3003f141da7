"""
Pytest configuration and fixtures for Mainspring tests.
"""

import tempfile
from pathlib import Path

import pytest

from mainspring.codec import StateCodec
from mainspring.locking import PlatformFileLocker
from mainspring.manager import StateManager
from mainspring.models import ResourceInstance, StateSnapshot
from mainspring.store import FilesystemStore


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def state_path(temp_dir):
    """Path of a state file that does not exist yet."""
    return temp_dir / "state.json"


@pytest.fixture
def store(state_path):
    """Store with backups enabled."""
    return FilesystemStore(state_path, StateCodec("0.1.0"), backup_path=state_path.with_name("state.json.backup"))


@pytest.fixture
def manager(store, state_path):
    """StateManager over the temporary state with a real file locker."""
    return StateManager(store, PlatformFileLocker(state_path), lock_poll_initial=0.01, lock_poll_max=0.05)


@pytest.fixture
def snapshot_l1():
    """Snapshot with lineage L1 and one resource "a"."""
    return StateSnapshot(
        lineage="L1",
        serial=0,
        resources={
            "a": ResourceInstance(
                provider="provider.docker",
                attributes={"image": "nginx:latest", "ports": [80]},
            )
        },
    )


@pytest.fixture
def seeded_store(store, snapshot_l1):
    """Store whose state is lineage L1 at serial 1."""
    store.atomic_write(snapshot_l1, None)
    return store
