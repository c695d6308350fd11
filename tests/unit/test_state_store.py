"""Unit tests for StateStore."""

import json

import pytest

from stager.exceptions import StateCorruptedError
from stager.models.state import FailureMarkerRecord, LockRecord
from stager.services.state_store import StateStore


@pytest.mark.unit
class TestStateStore:
    """Test StateStore persistence."""

    @pytest.fixture
    def store(self, tmp_path):
        return StateStore(tmp_path / "state")

    def test_creates_state_dir(self, tmp_path):
        StateStore(tmp_path / "a" / "b")
        assert (tmp_path / "a" / "b").is_dir()

    def test_save_and_load(self, store):
        """Test round trip through the JSON file."""
        # Arrange
        record = LockRecord(token="abc", owner="cli")

        # Act
        store.save("lock", record)
        loaded = store.load("lock", LockRecord)

        # Assert
        assert loaded.token == "abc"
        assert loaded.owner == "cli"
        assert store.path_for("lock").exists()

    def test_load_missing_returns_none(self, store):
        assert store.load("lock", LockRecord) is None

    def test_save_leaves_no_temp_files(self, store):
        store.save("lock", LockRecord(token="abc", owner="cli"))
        assert [p.name for p in store.state_dir.iterdir()] == ["lock.json"]

    def test_corrupted_file_raises_and_is_kept(self, store):
        """Corrupted records must be looked at by an operator, not deleted."""
        # Arrange
        store.path_for("failure_marker").write_text("{not json")

        # Act & Assert
        with pytest.raises(StateCorruptedError, match="Corrupted state file"):
            store.load("failure_marker", FailureMarkerRecord)
        assert store.path_for("failure_marker").exists()

    def test_invalid_record_raises(self, store):
        store.path_for("lock").write_text(json.dumps({"token": ""}))

        with pytest.raises(StateCorruptedError, match="Invalid record"):
            store.load("lock", LockRecord)

    def test_create_exclusive_only_once(self, store):
        """Second exclusive create must lose, whoever it is."""
        # Act
        first = store.create_exclusive("lock", LockRecord(token="one", owner="a"))
        second = store.create_exclusive("lock", LockRecord(token="two", owner="b"))

        # Assert
        assert first is True
        assert second is False
        assert store.load("lock", LockRecord).token == "one"

    def test_delete(self, store):
        store.save("lock", LockRecord(token="abc", owner="cli"))

        store.delete("lock")
        store.delete("lock")

        assert not store.exists("lock")

    def test_empty_file_is_corrupted(self, store):
        """An empty lock file is reported, not treated as a missing lock."""
        store.path_for("lock").write_text("")

        with pytest.raises(StateCorruptedError) as exc_info:
            store.load("lock", LockRecord)
        assert exc_info.value.to_payload()["kind"] == "state_corrupted"

    def test_create_exclusive_writes_complete_record(self, store):
        """The record appears under its name fully written, with no temp left."""
        # Act
        store.create_exclusive("lock", LockRecord(token="one", owner="a"))

        # Assert
        assert [p.name for p in store.state_dir.iterdir()] == ["lock.json"]
        assert json.loads(store.path_for("lock").read_text())["token"] == "one"

    def test_create_exclusive_loser_leaves_no_temp(self, store):
        store.create_exclusive("lock", LockRecord(token="one", owner="a"))

        store.create_exclusive("lock", LockRecord(token="two", owner="b"))

        assert [p.name for p in store.state_dir.iterdir()] == ["lock.json"]
