"""Tests for tracked-state persistence."""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from streamplane.attributes import UNKNOWN
from streamplane.resources.topic import TOPIC_SHAPE
from streamplane.resources.user import USER_SHAPE
from streamplane.state_store import StateStore, StateStoreError, TrackedResource


def topic_document():
    return TOPIC_SHAPE.document(
        id="orders",
        name="orders",
        cluster_api_url="https://api-cl-1.example.com",
        partition_count=6,
        replication_factor=UNKNOWN,
        configuration={"cleanup.policy": "compact"},
        allow_deletion=True,
    )


class TestStateStore:
    """Tests for StateStore."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        """No state file means nothing is tracked."""
        assert StateStore(tmp_path / "state.json").load() == {}

    def test_save_and_load(self, tmp_path: Path) -> None:
        """Saved documents come back equal, UNKNOWN included."""
        store = StateStore(tmp_path / "state.json")
        tracked = {"topic.orders": TrackedResource("topic", topic_document())}
        store.save(tracked)
        assert store.load() == tracked

    def test_file_is_private(self, tmp_path: Path) -> None:
        """State may hold passwords and is readable by the owner only."""
        store = StateStore(tmp_path / "state.json")
        user = USER_SHAPE.document(id="app", name="app", password="hunter2", mechanism="scram-sha-256")
        store.save({"user.app": TrackedResource("user", user)})
        mode = stat.S_IMODE((tmp_path / "state.json").stat().st_mode)
        assert mode == 0o600

    def test_save_leaves_no_temp_files(self, tmp_path: Path) -> None:
        """The temporary file is renamed into place."""
        store = StateStore(tmp_path / "state.json")
        store.save({})
        store.save({"topic.orders": TrackedResource("topic", topic_document())})
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_unsupported_version(self, tmp_path: Path) -> None:
        """Unknown file versions are refused."""
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 99, "resources": {}}))
        with pytest.raises(StateStoreError, match="Unsupported state file format"):
            StateStore(path).load()

    def test_invalid_json(self, tmp_path: Path) -> None:
        """A corrupt file is reported, not silently reset."""
        path = tmp_path / "state.json"
        path.write_text("{")
        with pytest.raises(StateStoreError, match="Invalid JSON"):
            StateStore(path).load()

    def test_unknown_kind(self, tmp_path: Path) -> None:
        """Entries of unknown kinds are malformed."""
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 1, "resources": {"queue.a": {"kind": "queue", "document": {}}}}))
        with pytest.raises(StateStoreError, match="Malformed state entry for queue.a"):
            StateStore(path).load()
