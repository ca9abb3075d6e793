"""
Tests for the durable key-value stores.
"""

import pytest

from chainsync.storage import FileStore, MemoryStore


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    """Each contract test runs against both store implementations."""
    if request.param == "memory":
        return MemoryStore()
    return FileStore(tmp_path / "store")


# =============================================================================
# Contract Tests
# =============================================================================

class TestKeyValueContract:
    """Tests for get/set/delete behaviour shared by every store."""

    def test_missing_key_reads_as_none(self, store):
        """Test that an unknown key returns None."""
        assert store.get("nope") is None
        assert store.get_json("nope") is None

    def test_set_then_get(self, store):
        """Test that a stored value is returned verbatim."""
        store.set("chainsync_auth", '{"address":"0xabc"}')
        assert store.get("chainsync_auth") == '{"address":"0xabc"}'

    def test_json_round_trip(self, store):
        """Test that set_json/get_json preserve structure."""
        store.set_json("transfer-storage", {"transfers": [{"id": "t1"}]})
        assert store.get_json("transfer-storage") == {"transfers": [{"id": "t1"}]}

    def test_delete_is_idempotent(self, store):
        """Test that deleting twice does not raise."""
        store.set("k", "v")
        store.delete("k")
        store.delete("k")
        assert store.get("k") is None

    def test_corrupt_json_is_cleared(self, store):
        """Test that a corrupt value is treated as absent and removed."""
        store.set("chainsync_auth", "{not json")

        assert store.get_json("chainsync_auth") is None
        assert store.get("chainsync_auth") is None


# =============================================================================
# FileStore Tests
# =============================================================================

class TestFileStore:
    """Tests specific to the file-backed store."""

    def test_values_survive_a_new_instance(self, tmp_path):
        """Test that a second store over the same directory sees the data."""
        FileStore(tmp_path).set("chainsync_auth", "persisted")
        assert FileStore(tmp_path).get("chainsync_auth") == "persisted"

    def test_keys_are_quoted_into_file_names(self, tmp_path):
        """Test that keys with path separators stay inside the directory."""
        store = FileStore(tmp_path)
        store.set("../escape/key", "v")

        assert store.get("../escape/key") == "v"
        assert [p.parent for p in tmp_path.iterdir()] == [tmp_path]

    def test_no_temporary_file_left_behind(self, tmp_path):
        """Test that the write-then-replace leaves only the final file."""
        store = FileStore(tmp_path)
        store.set("k", "v1")
        store.set("k", "v2")

        assert [p.name for p in tmp_path.iterdir()] == ["k.json"]
        assert store.get("k") == "v2"


class TestMemoryStore:

    def test_initial_values_are_copied(self):
        """Test that the initial mapping is not aliased."""
        initial = {"k": "v"}
        store = MemoryStore(initial)
        store.set("k2", "v2")

        assert initial == {"k": "v"}
        assert sorted(store.keys()) == ["k", "k2"]
