"""
Tests for local transfer history.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from chainsync.core.transfer.history import TransferHistory
from chainsync.core.transfer.models import TransferRecord, TransferStatus
from chainsync.errors import BackendError
from chainsync.storage import MemoryStore


def _record(transfer_id: str, minutes_ago: int = 0, **overrides) -> TransferRecord:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    fields = dict(
        id=transfer_id,
        source_chain_id=1,
        destination_chain_id=137,
        token_address="0x1111111111111111111111111111111111111111",
        amount="5",
        recipient_address="0x2222222222222222222222222222222222222222",
        created_at=created,
        updated_at=created,
    )
    fields.update(overrides)
    return TransferRecord(**fields)


@pytest.fixture
def storage() -> MemoryStore:
    return MemoryStore()


class TestTransferHistory:
    """Tests for local retention."""

    def test_newest_first(self, storage):
        history = TransferHistory(storage)
        history.add(_record("old", minutes_ago=10))
        history.add(_record("new", minutes_ago=1))

        assert [r.id for r in history.list()] == ["new", "old"]
        assert len(history) == 2
        assert "old" in history

    def test_persisted_under_transfer_storage(self, storage):
        TransferHistory(storage).add(_record("t-1"))

        reloaded = TransferHistory(storage)

        assert reloaded.get("t-1").amount == "5"
        assert storage.get_json("transfer-storage")["transfers"][0]["id"] == "t-1"

    def test_update_status_records_hashes(self, storage):
        history = TransferHistory(storage)
        history.add(_record("t-1"))

        history.update_status("t-1", TransferStatus.PROCESSING, source_hash="0xabc")
        history.mark_completed("t-1", destination_hash="0xdef")

        record = TransferHistory(storage).get("t-1")
        assert record.status == TransferStatus.COMPLETED
        assert record.source_hash == "0xabc"
        assert record.destination_hash == "0xdef"

    def test_update_unknown_transfer_is_ignored(self, storage):
        assert TransferHistory(storage).update_status("missing", TransferStatus.FAILED) is None

    def test_malformed_storage_is_cleared(self, storage):
        storage.set_json("transfer-storage", {"transfers": "nope"})

        history = TransferHistory(storage)

        assert len(history) == 0
        assert storage.get("transfer-storage") is None

    def test_corrupt_storage_is_cleared(self, storage):
        storage.set("transfer-storage", "{{{")

        assert len(TransferHistory(storage)) == 0
        assert storage.get("transfer-storage") is None

    def test_clear(self, storage):
        history = TransferHistory(storage)
        history.add(_record("t-1"))
        history.clear()

        assert history.list() == []
        assert storage.get("transfer-storage") is None


class TestHistorySync:
    """Tests for merging the backend list."""

    @pytest.mark.asyncio
    async def test_sync_merges_remote_records(self, storage):
        history = TransferHistory(storage)
        history.add(_record("local-only", minutes_ago=5))
        history.add(_record("shared", minutes_ago=3))

        api = MagicMock()
        api.list_transfers = AsyncMock(return_value=[_record("shared", minutes_ago=3, status=TransferStatus.COMPLETED)])

        records = await history.sync(api)

        assert [r.id for r in records] == ["shared", "local-only"]
        assert history.get("shared").status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_sync_unauthorised_keeps_local(self, storage):
        history = TransferHistory(storage)
        history.add(_record("t-1"))
        api = MagicMock()
        api.list_transfers = AsyncMock(side_effect=BackendError("Unauthorized", status_code=401))

        records = await history.sync(api)

        assert [r.id for r in records] == ["t-1"]

    @pytest.mark.asyncio
    async def test_sync_server_error_raises(self, storage):
        api = MagicMock()
        api.list_transfers = AsyncMock(side_effect=BackendError("down", status_code=500))

        with pytest.raises(BackendError):
            await TransferHistory(storage).sync(api)

    @pytest.mark.asyncio
    async def test_fetch_adds_record(self, storage):
        history = TransferHistory(storage)
        api = MagicMock()
        api.get_transfer = AsyncMock(return_value=_record("t-9"))

        record = await history.fetch(api, "t-9")

        api.get_transfer.assert_awaited_once_with("t-9")
        assert history.get("t-9") is record
