"""
Transfer History

Locally retained TransferRecords, persisted under one storage key and
synchronised from the backend on demand.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ...config import settings
from ...errors import BackendError
from ...storage import KeyValueStore, MemoryStore
from .models import TransferRecord, TransferStatus


class TransferHistory:
    """Newest-first list of transfers the user has made from this client."""

    def __init__(
        self,
        storage: Optional[KeyValueStore] = None,
        storage_key: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.storage = storage if storage is not None else MemoryStore()
        self.storage_key = storage_key or settings.transfers_storage_key
        self.logger = logger or logging.getLogger(__name__)
        self._records: Dict[str, TransferRecord] = {}
        self._load()

    def _load(self) -> None:
        data = self.storage.get_json(self.storage_key)
        if data is None:
            return
        items = data.get("transfers") if isinstance(data, dict) else None
        if not isinstance(items, list):
            self.logger.warning("Discarding malformed transfer history under %s", self.storage_key)
            self.storage.delete(self.storage_key)
            return
        for item in items:
            try:
                record = TransferRecord.from_dict(item)
            except (TypeError, ValueError, AttributeError):
                self.logger.warning("Skipping malformed transfer history entry")
                continue
            self._records[record.id] = record

    def _persist(self) -> None:
        self.storage.set_json(self.storage_key, {"transfers": [r.to_dict() for r in self.list()]})

    # =========================================================================
    # Queries
    # =========================================================================

    def list(self) -> List[TransferRecord]:
        return sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)

    def get(self, transfer_id: str) -> Optional[TransferRecord]:
        return self._records.get(transfer_id)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, transfer_id: object) -> bool:
        return transfer_id in self._records

    # =========================================================================
    # Updates
    # =========================================================================

    def add(self, record: TransferRecord) -> TransferRecord:
        self._records[record.id] = record
        self._persist()
        return record

    def update_status(
        self,
        transfer_id: str,
        status: TransferStatus,
        *,
        source_hash: Optional[str] = None,
        destination_hash: Optional[str] = None,
    ) -> Optional[TransferRecord]:
        record = self._records.get(transfer_id)
        if record is None:
            self.logger.debug("Status update for unknown transfer %s ignored", transfer_id)
            return None
        record.status = status
        if source_hash:
            record.source_hash = source_hash
        if destination_hash:
            record.destination_hash = destination_hash
        record.updated_at = datetime.now(timezone.utc)
        self._persist()
        return record

    def mark_completed(self, transfer_id: str, destination_hash: Optional[str] = None) -> Optional[TransferRecord]:
        return self.update_status(transfer_id, TransferStatus.COMPLETED, destination_hash=destination_hash)

    def clear(self) -> None:
        self._records.clear()
        self.storage.delete(self.storage_key)

    # =========================================================================
    # Backend sync
    # =========================================================================

    async def sync(self, api: Any) -> List[TransferRecord]:
        """
        Merge the backend's list into local history.

        Backend records replace local ones with the same id; local-only
        records are kept. An unauthorised response leaves history as is.
        """
        try:
            remote = await api.list_transfers()
        except BackendError as exc:
            if exc.status_code in (401, 403):
                self.logger.info("Transfer history sync skipped: not authorised")
                return self.list()
            raise

        for record in remote:
            self._records[record.id] = record
        self._persist()
        return self.list()

    async def fetch(self, api: Any, transfer_id: str) -> TransferRecord:
        record = await api.get_transfer(transfer_id)
        return self.add(record)
