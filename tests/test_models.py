"""
Unit tests for Mainspring models.

Tests the Pydantic state, lock and conflict models and their helpers.
"""

import pytest
from pydantic import ValidationError

from mainspring.models import ConflictReport, LockInfo, ResourceInstance, StateSnapshot


class TestStateSnapshot:
    """Test StateSnapshot model."""

    def test_new_snapshot_has_fresh_lineage(self):
        """Test new() starts an empty snapshot with a unique lineage."""
        first = StateSnapshot.new()
        second = StateSnapshot.new()
        assert first.serial == 0
        assert first.resources == {}
        assert first.outputs == {}
        assert first.lineage != second.lineage

    def test_negative_serial_rejected(self):
        """Test serial validation."""
        with pytest.raises(ValidationError):
            StateSnapshot(lineage="L1", serial=-1)

    def test_empty_lineage_rejected(self):
        """Test lineage validation."""
        with pytest.raises(ValidationError):
            StateSnapshot(lineage="")

    def test_add_and_remove_resource(self):
        """Test resource table editing."""
        snapshot = StateSnapshot(lineage="L1")
        snapshot.add_resource("a", ResourceInstance(provider="p"))
        assert "a" in snapshot.resources

        with pytest.raises(ValueError):
            snapshot.add_resource("a", ResourceInstance())

        removed = snapshot.remove_resource("a")
        assert removed.provider == "p"
        with pytest.raises(KeyError):
            snapshot.remove_resource("a")

    def test_move_resource_rewrites_dependencies(self):
        """Test move_resource renames the address and references to it."""
        snapshot = StateSnapshot(
            lineage="L1",
            resources={
                "db": ResourceInstance(),
                "web": ResourceInstance(dependencies=["db", "net"]),
            },
        )
        snapshot.move_resource("db", "database")

        assert set(snapshot.resources) == {"database", "web"}
        assert snapshot.resources["web"].dependencies == ["database", "net"]

    def test_move_resource_errors(self):
        """Test move_resource refuses missing sources and taken destinations."""
        snapshot = StateSnapshot(lineage="L1", resources={"a": ResourceInstance(), "b": ResourceInstance()})
        with pytest.raises(KeyError):
            snapshot.move_resource("missing", "c")
        with pytest.raises(ValueError):
            snapshot.move_resource("a", "b")


class TestLockInfo:
    """Test LockInfo model."""

    def test_defaults(self):
        """Test a lock info gets a token, holder and timestamp."""
        info = LockInfo(operation="apply")
        other = LockInfo(operation="apply")
        assert info.id != other.id
        assert "@" in info.who
        assert info.pid > 0
        assert info.created.tzinfo is not None

    def test_describe_mentions_operation_and_holder(self):
        info = LockInfo(id="abc", operation="apply", who="ops@ci-1", pid=42)
        text = info.describe()
        assert "'apply'" in text
        assert "ops@ci-1" in text
        assert "abc" in text

    def test_json_round_trip(self):
        """Test lock info survives the sidecar JSON format."""
        info = LockInfo(operation="plan", info="ci job 7")
        assert LockInfo.model_validate_json(info.model_dump_json()) == info


class TestConflictReport:
    """Test ConflictReport descriptions."""

    def test_serial_conflict(self):
        report = ConflictReport(local_serial=1, remote_serial=2, local_lineage="L1", remote_lineage="L1")
        assert "read serial 1" in report.describe()
        assert "current serial is 2" in report.describe()

    def test_lineage_conflict(self):
        report = ConflictReport(local_lineage="L1", remote_lineage="L2", lineage_mismatch=True)
        assert "lineage changed" in report.describe()
