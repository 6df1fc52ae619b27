"""
Entity Store
Canonical table keyed by (app_key, collection_key, external_id)

IDEMPOTENCY:
- Every write is an upsert with on_conflict on the identity triple
- Deleting a missing identity is a no-op (count 0, no error)
- updated_at is maintained by a database trigger on every update
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from saasync.services.connectors.types import NormalizedEntity
from saasync.services.store.base import SupabaseStore, to_iso

logger = logging.getLogger(__name__)

ENTITIES_TABLE = "entities"
IDENTITY_CONFLICT = "app_key,collection_key,external_id"

# PostgREST caps responses (default max-rows 1000), so reads page with range()
READ_PAGE_SIZE = 1000
UPSERT_BATCH_SIZE = 500


def entity_to_row(entity: NormalizedEntity) -> Dict[str, Any]:
    """archived_at is always sent so that un-archiving clears the column."""
    return {
        "external_id": entity.external_id,
        "app_key": entity.app_key,
        "collection_key": entity.collection_key,
        "api_version": entity.api_version,
        "raw_payload": entity.raw_payload,
        "archived_at": to_iso(entity.archived_at),
    }


def _dedupe(entities: Iterable[NormalizedEntity]) -> List[NormalizedEntity]:
    # One statement cannot touch the same conflict target twice; last one wins
    by_identity: Dict[tuple, NormalizedEntity] = {}
    for entity in entities:
        by_identity[entity.identity] = entity
    return list(by_identity.values())


class EntityStore(SupabaseStore):
    """Reads and writes canonical entities."""

    def upsert_entity(self, entity: NormalizedEntity) -> Dict[str, Any]:
        result = self._execute(
            self._table(ENTITIES_TABLE).upsert(entity_to_row(entity), on_conflict=IDENTITY_CONFLICT),
            f"Upsert {entity.collection_key}/{entity.external_id}",
        )
        return result.data[0] if result.data else {}

    def upsert_entities(self, entities: Iterable[NormalizedEntity]) -> List[Dict[str, Any]]:
        """
        Upsert a batch of entities.

        Each row resolves its own conflict target, so a failed chunk never
        corrupts rows written by earlier chunks.
        """
        unique = _dedupe(entities)
        written: List[Dict[str, Any]] = []
        for start in range(0, len(unique), UPSERT_BATCH_SIZE):
            chunk = unique[start:start + UPSERT_BATCH_SIZE]
            result = self._execute(
                self._table(ENTITIES_TABLE).upsert(
                    [entity_to_row(entity) for entity in chunk],
                    on_conflict=IDENTITY_CONFLICT,
                ),
                f"Upsert batch of {len(chunk)} entities",
            )
            written.extend(result.data or [])
        return written

    def delete_entity(self, app_key: str, collection_key: str, external_id: str) -> int:
        result = self._execute(
            self._table(ENTITIES_TABLE)
            .delete(count="exact")
            .eq("app_key", app_key)
            .eq("collection_key", collection_key)
            .eq("external_id", external_id),
            f"Delete {collection_key}/{external_id}",
        )
        return result.count if result.count is not None else len(result.data or [])

    def delete_entities(self, app_key: str, collection_key: Optional[str] = None) -> int:
        query = self._table(ENTITIES_TABLE).delete(count="exact").eq("app_key", app_key)
        if collection_key:
            query = query.eq("collection_key", collection_key)
        result = self._execute(query, f"Delete entities for {app_key}/{collection_key or '*'}")
        deleted = result.count if result.count is not None else len(result.data or [])
        logger.info(f"🗑️  Deleted {deleted} entities for {app_key}/{collection_key or '*'}")
        return deleted

    def get_entity(self, app_key: str, collection_key: str, external_id: str) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self._table(ENTITIES_TABLE)
            .select("*")
            .eq("app_key", app_key)
            .eq("collection_key", collection_key)
            .eq("external_id", external_id)
            .limit(1),
            f"Get {collection_key}/{external_id}",
        )
        return result.data[0] if result.data else None

    def list_external_ids(
        self,
        app_key: str,
        collection_key: str,
        created_after: Optional[int] = None,
        created_field: str = "created",
        parent_field: Optional[str] = None,
        parent_ids: Optional[Set[str]] = None,
    ) -> Set[str]:
        """
        Return the external ids stored for one resource.

        With created_after (unix seconds), only ids whose provider creation
        time raw_payload[created_field] is known and >= created_after are
        returned. Records without a numeric creation time are left out.

        With parent_field, only ids whose raw_payload[parent_field] is one of
        parent_ids are returned (child records of the given parents).
        """
        filtered = created_after is not None or parent_field is not None
        columns = "external_id, raw_payload" if filtered else "external_id"
        ids: Set[str] = set()
        start = 0
        while True:
            result = self._execute(
                self._table(ENTITIES_TABLE)
                .select(columns)
                .eq("app_key", app_key)
                .eq("collection_key", collection_key)
                .order("external_id")
                .range(start, start + READ_PAGE_SIZE - 1),
                f"List external ids for {app_key}/{collection_key}",
            )
            rows = result.data or []
            for row in rows:
                payload = row.get("raw_payload") or {}
                if created_after is not None:
                    created = payload.get(created_field)
                    if isinstance(created, bool) or not isinstance(created, (int, float)):
                        continue
                    if created < created_after:
                        continue
                if parent_field is not None:
                    parent = payload.get(parent_field)
                    if isinstance(parent, dict):  # expanded reference
                        parent = parent.get("id")
                    if not isinstance(parent, str) or parent not in (parent_ids or set()):
                        continue
                ids.add(row["external_id"])
            if len(rows) < READ_PAGE_SIZE:
                break
            start += READ_PAGE_SIZE
        return ids
