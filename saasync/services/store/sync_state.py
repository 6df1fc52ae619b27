"""
Sync State Tracker
Watermark per (app_key, collection_key) bounding incremental pulls
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from saasync.services.store.base import SupabaseStore, parse_timestamp, to_iso

logger = logging.getLogger(__name__)

SYNC_STATE_TABLE = "sync_state"


class SyncState(BaseModel):
    app_key: str
    collection_key: str
    last_synced_at: datetime
    last_sync_metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SyncState":
        return cls(
            app_key=row["app_key"],
            collection_key=row["collection_key"],
            last_synced_at=parse_timestamp(row["last_synced_at"]),
            last_sync_metadata=row.get("last_sync_metadata") or {},
        )


class SyncStateStore(SupabaseStore):

    def get_sync_state(self, app_key: str, collection_key: str) -> Optional[SyncState]:
        result = self._execute(
            self._table(SYNC_STATE_TABLE)
            .select("*")
            .eq("app_key", app_key)
            .eq("collection_key", collection_key)
            .limit(1),
            f"Get sync state {app_key}/{collection_key}",
        )
        if not result.data:
            return None
        return SyncState.from_row(result.data[0])

    def update_sync_state(
        self,
        app_key: str,
        collection_key: str,
        last_synced_at: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SyncState:
        """Only call after the resource's sync completed successfully."""
        row = {
            "app_key": app_key,
            "collection_key": collection_key,
            "last_synced_at": to_iso(last_synced_at),
            "last_sync_metadata": metadata or {},
        }
        result = self._execute(
            self._table(SYNC_STATE_TABLE).upsert(row, on_conflict="app_key,collection_key"),
            f"Update sync state {app_key}/{collection_key}",
        )
        logger.debug(f"Sync state {app_key}/{collection_key} -> {row['last_synced_at']}")
        return SyncState.from_row(result.data[0] if result.data else row)

    def list_sync_states(self, app_key: str) -> List[SyncState]:
        result = self._execute(
            self._table(SYNC_STATE_TABLE).select("*").eq("app_key", app_key),
            f"List sync states for {app_key}",
        )
        return [SyncState.from_row(row) for row in result.data or []]
